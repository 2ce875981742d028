"""
Column types that behave the same on PostgreSQL and SQLite.

PostgreSQL gets native UUID and JSONB, SQLite stores UUIDs as CHAR(32)
and JSON as text.
"""
from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

UUIDType = Uuid
JSONType = JSON().with_variant(JSONB(), "postgresql")
