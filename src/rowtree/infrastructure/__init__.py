"""Infrastructure layer — database engine and the record store.

This layer depends on stdlib and SQLAlchemy. It turns the semantic
predicates and writes produced by the engines into bound-parameter SQL.
"""
