"""Domain layer — entity schemas, field mapping, and record trees.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
