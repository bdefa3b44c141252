"""Executor exceptions."""

from typing import Any, Dict, Optional


class ApiTestError(Exception):
    """A test definition could not be executed at all."""

    def __init__(self, message: str, test_id: str, details: Optional[Dict[str, Any]] = None):
        self.test_id = test_id
        self.details = details or {}
        super().__init__(f"{message} (test {test_id})")


class ToolTransientError(Exception):
    """Raised by a tool client for failures worth retrying (connection drops, busy servers)."""


class ToolExecutionError(Exception):
    """Raised by a tool client when the tool itself reports an error."""

    def __init__(self, message: str, tool: str, server: str):
        self.tool = tool
        self.server = server
        super().__init__(f"{server}::{tool} failed: {message}")


class SchemaDefinitionError(ValueError):
    """The expected JSON schema is itself invalid."""
