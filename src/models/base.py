"""Declarative bases for the ORM models."""

from sqlalchemy.orm import declarative_base

# Current key-value store
Base = declarative_base()

# Prior-generation settings database, read only during migration
LegacyBase = declarative_base()
