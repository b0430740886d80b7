"""
Desired-state validation.

Validates the documents fed to ``fwctl sync`` before any provider call is
made.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

DESIRED_STATE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "ports": {
            "type": "array",
            "items": {"type": "integer", "minimum": 1, "maximum": 65535},
        },
        "nodes": {
            "type": "array",
            "items": {"type": "string", "minLength": 1},
        },
    },
}


def validate_desired_state(document: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate a desired-state document.

    Args:
        document: Parsed YAML/JSON with optional ``ports`` and ``nodes`` lists

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(DESIRED_STATE_SCHEMA)
        errors = sorted(
            validator.iter_errors(document), key=lambda e: [str(p) for p in e.path]
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"
