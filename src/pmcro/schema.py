# schema.py
# Recursive structural validator for plan and tool-argument shapes.
#
# Supports the JSON Schema subset used by plan parsing and the protocol
# server: type, required, properties, items, minItems, maxItems, minLength,
# enum, minimum, maximum. Composition keywords, $ref and format are ignored.
#
# stdlib only. Pure functions, no I/O.

from dataclasses import dataclass
from typing import Any


# ---------------------------------------------------------------------------
# Violation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Violation:
    """A single schema violation, addressed by a JSON-pointer path."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path or '/'}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _kind(value: Any) -> str:
    """Name the JSON kind of a decoded Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _is_type(value: Any, expected: str) -> bool:
    if expected == "object":
        return isinstance(value, dict)
    if expected == "array":
        return isinstance(value, (list, tuple))
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "null":
        return value is None
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        if isinstance(value, bool):
            return False
        if isinstance(value, int):
            return True
        return isinstance(value, float) and value.is_integer()
    # Unknown type names never reject.
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _child(path: str, token: Any) -> str:
    token = str(token).replace("~", "~0").replace("/", "~1")
    return f"{path}/{token}"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate(instance: Any, schema: dict[str, Any], path: str = "") -> list[Violation]:
    """
    Validate `instance` against `schema` and return every violation found.

    A type mismatch stops further checks on that node; all other keywords
    are checked independently so one pass reports every problem.
    """
    violations: list[Violation] = []

    expected = schema.get("type")
    if expected is not None:
        names = expected if isinstance(expected, list) else [expected]
        if not any(_is_type(instance, name) for name in names):
            violations.append(
                Violation(path, f"expected type '{'|'.join(names)}', got '{_kind(instance)}'")
            )
            return violations

    if isinstance(instance, dict):
        for field in schema.get("required", []):
            if field not in instance:
                violations.append(Violation(path, f"missing required field '{field}'"))

        properties = schema.get("properties", {})
        for key, value in instance.items():
            if key in properties:
                violations.extend(validate(value, properties[key], _child(path, key)))

    if isinstance(instance, (list, tuple)):
        items = schema.get("items")
        if isinstance(items, dict):
            for index, item in enumerate(instance):
                violations.extend(validate(item, items, _child(path, index)))

        count = len(instance)
        if "minItems" in schema and count < schema["minItems"]:
            violations.append(
                Violation(path, f"array has {count} items, minimum is {schema['minItems']}")
            )
        if "maxItems" in schema and count > schema["maxItems"]:
            violations.append(
                Violation(path, f"array has {count} items, maximum is {schema['maxItems']}")
            )

    if isinstance(instance, str):
        if "minLength" in schema and len(instance) < schema["minLength"]:
            violations.append(
                Violation(
                    path,
                    f"string length {len(instance)} is below minimum {schema['minLength']}",
                )
            )
        if "enum" in schema and instance not in schema["enum"]:
            allowed = ", ".join(str(v) for v in schema["enum"])
            violations.append(Violation(path, f"value '{instance}' not in allowed values: {allowed}"))

    if _is_number(instance):
        if "minimum" in schema and instance < schema["minimum"]:
            violations.append(Violation(path, f"value {instance} is below minimum {schema['minimum']}"))
        if "maximum" in schema and instance > schema["maximum"]:
            violations.append(Violation(path, f"value {instance} is above maximum {schema['maximum']}"))

    return violations


def is_valid(instance: Any, schema: dict[str, Any]) -> bool:
    return not validate(instance, schema)


def describe(violations: list[Violation]) -> str:
    """Render violations as a single diagnostic line."""
    return "; ".join(str(v) for v in violations)
