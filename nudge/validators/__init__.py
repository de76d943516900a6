"""Validation of user-supplied definition files."""

from .items import SCHEMA_PATH, validate_items

__all__ = ["SCHEMA_PATH", "validate_items"]
