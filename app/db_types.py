"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON everywhere else (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Fixed-point quantity used for ERP and counted quantities
QuantityType = Numeric(18, 4)
