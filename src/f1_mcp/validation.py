"""Input validation module for the F1 MCP server.

Tool arguments arrive as untyped JSON. ``validate_arguments`` checks them
against the tool's declared input schema (the JSON-Schema subset the tool
declarations use) and returns a cleaned copy with defaults applied.
"""
import re
from datetime import datetime
from typing import Any, Dict, Optional

from f1_mcp.errors import required_argument_error, validation_error

# First season of the world championship
FIRST_SEASON = 1950

# Ergast ids: lowercase words joined by underscores, e.g. "max_verstappen", "red_bull"
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")

INTEGER_PATTERN = re.compile(r"^-?\d+$")


def validate_year(year: int, field_name: str = "year") -> None:
    """
    Validate that a season year is within the championship's history.

    Args:
        year: Season year
        field_name: Name of the field for error messages

    Raises:
        ArgumentValidationError: If the year is before 1950 or after next year
    """
    latest = datetime.now().year + 1
    if year < FIRST_SEASON or year > latest:
        raise validation_error(
            field_name,
            f"must be between {FIRST_SEASON} and {latest}, got: {year}",
            "Use getSeasonList to see which seasons are available.",
        )


def validate_identifier(value: str, field_name: str) -> None:
    """
    Validate an Ergast-style identifier such as a driver or circuit id.

    Raises:
        ArgumentValidationError: If the identifier is empty or has invalid characters
    """
    if not value or not value.strip():
        raise validation_error(field_name, "cannot be empty", f"Provide a {field_name}.")

    if not IDENTIFIER_PATTERN.match(value):
        raise validation_error(
            field_name,
            f"contains invalid characters: {value}",
            "Identifiers look like 'hamilton', 'max_verstappen' or 'red_bull'.",
        )


def validate_numeric_range(
    value: int | float,
    field_name: str,
    min_value: Optional[int | float] = None,
    max_value: Optional[int | float] = None,
) -> None:
    """
    Validate that a numeric value is within specified bounds.

    Args:
        value: The numeric value to validate
        field_name: Name of the field for error messages
        min_value: Minimum allowed value (inclusive), or None for no minimum
        max_value: Maximum allowed value (inclusive), or None for no maximum

    Raises:
        ArgumentValidationError: If the value is outside the allowed range
    """
    if min_value is not None and value < min_value:
        raise validation_error(
            field_name,
            f"must be at least {min_value}, got: {value}",
            f"Use a {field_name} of {min_value} or more.",
        )

    if max_value is not None and value > max_value:
        raise validation_error(
            field_name,
            f"must be at most {max_value}, got: {value}",
            f"Use a {field_name} of {max_value} or less.",
        )


def _coerce(value: Any, expected: str, field_name: str) -> Any:
    """Convert a JSON value to the declared type, accepting lenient forms."""
    if expected == "integer":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and INTEGER_PATTERN.match(value.strip()):
            return int(value.strip())
        raise validation_error(field_name, f"expected an integer, got: {value!r}", "Pass a whole number.")

    if expected == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                pass
        raise validation_error(field_name, f"expected a number, got: {value!r}", "Pass a number.")

    if expected == "string":
        if isinstance(value, str):
            return value
        # session keys and driver numbers are often sent as numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        raise validation_error(field_name, f"expected a string, got: {value!r}", "Pass a string.")

    if expected == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise validation_error(field_name, f"expected a boolean, got: {value!r}", "Pass true or false.")

    return value


def validate_arguments(schema: Dict[str, Any], arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate tool arguments against a declared input schema.

    Args:
        schema: JSON schema of the tool (``type: object``)
        arguments: Arguments received from the client (may be None)

    Returns:
        Cleaned arguments: coerced to the declared types, defaults applied

    Raises:
        ArgumentValidationError: On unknown, missing or ill-typed arguments
    """
    arguments = arguments or {}
    if not isinstance(arguments, dict):
        raise validation_error("arguments", "must be an object", "Pass arguments as a JSON object.")

    properties: Dict[str, Dict[str, Any]] = schema.get("properties", {})

    if schema.get("additionalProperties") is False:
        for name in arguments:
            if name not in properties:
                allowed = ", ".join(sorted(properties)) or "none"
                raise validation_error(
                    name, "unknown argument", f"Allowed arguments are: {allowed}."
                )

    for name in schema.get("required", []):
        if arguments.get(name) is None:
            raise required_argument_error(name)

    cleaned: Dict[str, Any] = {}
    for name, prop in properties.items():
        value = arguments.get(name)
        if value is None:
            if "default" in prop:
                cleaned[name] = prop["default"]
            continue

        value = _coerce(value, prop.get("type", "string"), name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            validate_numeric_range(value, name, prop.get("minimum"), prop.get("maximum"))
        cleaned[name] = value

    return cleaned
