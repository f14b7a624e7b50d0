"""JSON Schema checks for discovered tool input schemas."""

from typing import Any

from jsonschema import Draft7Validator, SchemaError


def check_input_schema(schema: Any) -> list[str]:
    """
    Check that a tool input schema is a usable JSON Schema object.

    Args:
        schema: Schema reported by a tool provider

    Returns:
        List of problems; empty if the schema is acceptable
    """
    if not isinstance(schema, dict):
        return [f"input schema must be an object, got {type(schema).__name__}"]

    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        path = ".".join(str(p) for p in e.path)
        return [f"{path}: {e.message}" if path else e.message]

    schema_type = schema.get("type", "object")
    if schema_type != "object":
        return [f"input schema type must be 'object', got {schema_type!r}"]

    return []
