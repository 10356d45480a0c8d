"""
Named JSON schemas for structured step results.

Handlers that emit structured data validate it against a schema looked
up by name. Validation failures raise ``SchemaValidationError`` carrying
one ``path: message`` string per violation.
"""

from typing import Any

import jsonschema

from nodeflow.errors import SchemaValidationError

PARSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["source", "title", "text", "links"],
    "properties": {
        "source": {"type": "string"},
        "title": {"type": "string", "minLength": 1},
        "text": {"type": "string"},
        "links": {"type": "array", "items": {"type": "string"}},
    },
}

_TREE_NODE: dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string"},
        "title": {"type": "string"},
        "content": {"type": ["string", "null"]},
        "meta": {"type": "object"},
        "children": {"type": "array", "items": {"$ref": "#/definitions/node"}},
    },
}

TREE_SCHEMA: dict[str, Any] = {
    "definitions": {"node": _TREE_NODE},
    "type": "object",
    "required": ["nodes"],
    "properties": {"nodes": {"type": "array", "items": {"$ref": "#/definitions/node"}}},
}


class SchemaRegistry:
    """Name -> JSON schema lookup with Draft 7 validation."""

    def __init__(self, schemas: dict[str, dict[str, Any]] | None = None):
        self._schemas: dict[str, dict[str, Any]] = {
            "PARSE_SCHEMA": PARSE_SCHEMA,
            "TREE_SCHEMA": TREE_SCHEMA,
            "MINDMAP_SCHEMA": TREE_SCHEMA,
        }
        self._schemas.update(schemas or {})

    def register(self, name: str, schema: dict[str, Any]) -> None:
        jsonschema.Draft7Validator.check_schema(schema)
        self._schemas[name] = schema

    def get(self, name: str) -> dict[str, Any]:
        schema = self._schemas.get(name)
        if schema is None:
            raise SchemaValidationError(f"Schema {name} is not registered", schema=name)
        return schema

    def validate(self, name: str, payload: Any) -> None:
        """
        Raises:
            SchemaValidationError: unknown schema name or invalid payload
        """
        validator = jsonschema.Draft7Validator(self.get(name))
        errors = []
        for error in validator.iter_errors(payload):
            path = ".".join(str(p) for p in error.path) if error.path else "root"
            errors.append(f"{path}: {error.message}")
        if errors:
            raise SchemaValidationError(
                f"Result does not match {name}: {'; '.join(errors)}", errors=errors, schema=name
            )
