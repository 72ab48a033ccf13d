"""
Schema checks for vault documents.

Checkpoint JSON and feature frontmatter are checked against the schemas in
claw/schemas on every read and every write. A mismatch raises
ValidationError naming the schema and the dotted path of the bad field, so a
hand-edited note that broke is easy to find.
"""

import json
from pathlib import Path

import jsonschema

SCHEMAS_DIR = Path(__file__).parent.parent / "schemas"

_schemas: dict[str, dict] = {}


class ValidationError(Exception):
    """Data does not match its schema."""

    def __init__(self, schema_name: str, message: str, path: str = None):
        self.schema_name = schema_name
        self.path = path
        where = f" at {path}" if path else ""
        super().__init__(f"[{schema_name}] {message}{where}")


def _schema(name: str) -> dict:
    if name not in _schemas:
        path = SCHEMAS_DIR / f"{name}.schema.json"
        if not path.is_file():
            raise ValidationError(name, f"Schema file not found: {path}")
        _schemas[name] = json.loads(path.read_text())
    return _schemas[name]


def validate(data: dict, schema_name: str) -> None:
    """Check `data` against schemas/<schema_name>.schema.json.

    Raises:
        ValidationError: with the first failing field's path ("(root)" for top-level errors)
    """
    try:
        jsonschema.validate(instance=data, schema=_schema(schema_name))
    except jsonschema.ValidationError as e:
        path = ".".join(map(str, e.absolute_path)) or "(root)"
        raise ValidationError(schema_name, e.message, path) from None


def validate_before_write(data: dict, schema_name: str, target: str) -> None:
    """validate(), reworded for the caller that was about to persist `data` to `target`."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Refusing to write invalid data to {target}: {e}") from None
