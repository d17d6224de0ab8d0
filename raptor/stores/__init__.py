"""Data-access layer: thin wrappers over a SQLAlchemy session.

Stores flush but never commit; the calling service owns the transaction.
"""
