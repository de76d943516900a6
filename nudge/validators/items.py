"""Items file validation against JSON Schema."""

import json
from pathlib import Path

import jsonschema

# Packaged alongside this module
SCHEMA_PATH = Path(__file__).parent / "items_schema.json"


def _load_schema() -> dict:
    """Load the items JSON schema."""
    with open(SCHEMA_PATH) as f:
        return json.load(f)


def validate_items(document: dict) -> tuple[bool, list[str]]:
    """
    Validate an items document against the schema and registry constraints.

    Args:
        document: The parsed items file.

    Returns:
        A tuple of (is_valid, list_of_errors).
        If valid, errors list is empty.
    """
    errors: list[str] = []

    try:
        schema = _load_schema()
        validator = jsonschema.Draft7Validator(schema)
        for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
            location = "/".join(str(p) for p in error.path) or "<root>"
            errors.append(f"Schema validation error at {location}: {error.message}")
    except FileNotFoundError:
        errors.append(f"Schema file not found: {SCHEMA_PATH}")
    except json.JSONDecodeError as e:
        errors.append(f"Schema JSON decode error: {e}")

    # fn must be unique across the file
    items = document.get("items", []) if isinstance(document, dict) else []
    seen: set[str] = set()
    for entry in items:
        fn = entry.get("fn") if isinstance(entry, dict) else None
        if not isinstance(fn, str):
            continue
        if fn in seen:
            errors.append(f"Duplicate item fn: {fn}")
        seen.add(fn)

    return (len(errors) == 0, errors)
