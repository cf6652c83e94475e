"""
Schema Validation - OpenAPI v3 schema checks for records read from the store.

The Dummy schema mirrors the CRD's openAPIV3Schema. The Pod schema only
covers the fields the operator reads.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

_METADATA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name"],
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "namespace": {"type": "string"},
        "uid": {"type": "string"},
        "resourceVersion": {"type": "string"},
        "ownerReferences": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["kind", "name"],
                "properties": {
                    "kind": {"type": "string"},
                    "name": {"type": "string"},
                    "uid": {"type": "string"},
                    "controller": {"type": "boolean"},
                },
            },
        },
    },
}

DUMMY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["metadata"],
    "properties": {
        "metadata": _METADATA_SCHEMA,
        "spec": {
            "type": "object",
            "properties": {"message": {"type": "string"}},
        },
        "status": {
            "type": "object",
            "properties": {
                "podStatus": {"type": "string"},
                "specEcho": {"type": "string"},
            },
        },
    },
}

POD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["metadata"],
    "properties": {
        "metadata": _METADATA_SCHEMA,
        "spec": {"type": "object"},
        "status": {
            "type": ["object", "null"],
            "properties": {"phase": {"type": ["string", "null"]}},
        },
    },
}

_DUMMY_VALIDATOR = Draft7Validator(DUMMY_SCHEMA)
_POD_VALIDATOR = Draft7Validator(POD_SCHEMA)


def _collect_errors(
    validator: Draft7Validator, record: Any
) -> Tuple[bool, Optional[str]]:
    try:
        errors = list(validator.iter_errors(record))
    except ValidationError as e:
        logger.error(f"Unexpected error during validation: {e}")
        return False, f"Validation error: {str(e)}"

    if not errors:
        return True, None

    error_messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) or "(root)"
        error_messages.append(f"{path}: {error.message}")

    return False, "; ".join(error_messages)


def validate_dummy(record: Any) -> Tuple[bool, Optional[str]]:
    """Validate a Dummy record against the CRD schema."""
    return _collect_errors(_DUMMY_VALIDATOR, record)


def validate_pod(record: Any) -> Tuple[bool, Optional[str]]:
    """Validate the fields of a Pod record the operator relies on."""
    return _collect_errors(_POD_VALIDATOR, record)
