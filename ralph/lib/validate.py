"""
Schema validation for ralph.

Every data boundary (PRD load, iteration log write) is checked against a
JSON Schema. Fails hard with the offending path in the message.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any

import jsonschema
from jsonschema.exceptions import best_match

from ralph.lib.errors import ConfigError

SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


class SchemaValidationError(ConfigError):
    """Data does not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.message = message
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


@lru_cache(maxsize=8)
def load_schema(schema_name: str) -> dict:
    """Load a schema by name, e.g. 'prd' -> schemas/prd.schema.json."""
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.exists():
        raise SchemaValidationError(schema_name, f"Schema file not found: {schema_path}")
    return json.loads(schema_path.read_text())


def _format_path(parts) -> str:
    """Render a jsonschema absolute_path as dotted/indexed text."""
    text = ""
    for part in parts:
        if isinstance(part, int):
            text += f"[{part}]"
        else:
            text += f".{part}" if text else str(part)
    return text or "(root)"


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against a named schema.

    Raises:
        SchemaValidationError: with the most relevant error's path
    """
    schema = load_schema(schema_name)
    validator = jsonschema.Draft7Validator(schema)
    error = best_match(validator.iter_errors(data))
    if error is not None:
        raise SchemaValidationError(schema_name, error.message, _format_path(error.absolute_path))


def validate_before_write(data: Any, schema_name: str, filepath: Path) -> None:
    """Validate data before writing it, so invalid data never reaches disk."""
    try:
        validate(data, schema_name)
    except SchemaValidationError as e:
        raise SchemaValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e.message}",
            e.path,
        ) from None
