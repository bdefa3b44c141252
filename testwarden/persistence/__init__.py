"""SQLite persistence for testwarden."""

from testwarden.persistence.database import Database
from testwarden.persistence.schema_manager import SchemaManager

__all__ = ["Database", "SchemaManager"]
