"""Service layer — the record-graph engines and the surfaced record API.

Services may import from domain, infrastructure and plugins.
They must never import from commands or config.
"""
