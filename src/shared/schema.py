"""JSON Schema generation and validation utilities."""

from typing import Any, Mapping

from jsonschema import Draft7Validator, ValidationError

from shared.models import ParameterSchema

JSON_SCHEMA_DRAFT = "http://json-schema.org/draft-07/schema#"


def build_input_schema(parameters: Mapping[str, ParameterSchema]) -> dict[str, Any]:
    """
    Create a tool inputSchema from its parameter definitions.

    ``properties`` is always a mapping, even with no parameters, so it
    serializes as a JSON object. ``required`` is omitted when empty.

    Args:
        parameters: Parameter definitions keyed by name

    Returns:
        JSON Schema dictionary
    """
    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in parameters.items():
        properties[name] = param.to_json_schema()
        if param.required:
            required.append(name)

    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": True,
        "$schema": JSON_SCHEMA_DRAFT,
    }

    if required:
        schema["required"] = required

    return schema


def iter_schema_errors(data: Any, schema: dict[str, Any]) -> list[ValidationError]:
    """
    Collect validation errors for data against a JSON Schema.

    Errors are ordered by their path so callers get a stable first error.
    """
    if not schema:
        return []

    validator = Draft7Validator(schema)
    return sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.path])


def format_schema_error(error: ValidationError) -> str:
    """Render a validation error with its dotted path."""
    if error.path:
        return f"{'.'.join(str(p) for p in error.path)}: {error.message}"
    return error.message
