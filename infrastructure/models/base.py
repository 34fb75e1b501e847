"""
Declarative base for the ORM models (SQLAlchemy 2.0 style).
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# target metadata for Alembic autogenerate
metadata = Base.metadata
