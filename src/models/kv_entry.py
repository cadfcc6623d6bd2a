"""Key-value entry database model.

One row per store key; the value is an opaque string, usually a JSON
document holding a whole bucket.
"""

from sqlalchemy import Column, String, Text

from .base import Base


class KeyValueEntry(Base):
    """String key to string value, the shape of a browser localStorage entry."""

    __tablename__ = "kv_store"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
