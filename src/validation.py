"""
Schema Validation - JSON Schema validation of desired resource specs.

Provides functions to validate resource specs against the JSON Schema
(Draft 7) shipped with each resource kind.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

from kinds.base import ResourceKind
from policy import UNKNOWN, is_present

logger = logging.getLogger(__name__)


def validate_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is a valid Draft 7 JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        Draft7Validator.check_schema(schema)
        return True, None
    except Exception as e:
        return False, f"Invalid schema: {str(e)}"


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a resource spec against a JSON Schema.

    Args:
        spec: The resource spec to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(
            schema, format_checker=Draft7Validator.FORMAT_CHECKER
        )
        errors = sorted(validator.iter_errors(spec), key=lambda e: list(e.path))

        if not errors:
            return True, None

        # Collect all validation errors
        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"
    except Exception as e:
        logger.error(f"Unexpected error during validation: {e}")
        return False, f"Validation failed: {str(e)}"


def validate_resource_spec(
    kind: ResourceKind, spec: Mapping[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a desired spec against its kind's schema.

    Absent attributes are left out. Unknown attributes are left out as well,
    except that required attributes must still be known.

    Args:
        kind: The resource kind.
        spec: The desired spec, possibly holding ABSENT/UNKNOWN markers.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not kind.schema:
        return True, None

    unresolved = [a for a, v in spec.items() if v is UNKNOWN]
    required = set(kind.schema.get("required", []))
    for attribute in unresolved:
        if attribute in required:
            return False, f"{attribute}: value must be known before reconciling"

    concrete = {a: v for a, v in spec.items() if is_present(v)}
    return validate_spec_against_schema(concrete, kind.schema)
