"""Base helpers shared by Courier models."""

from __future__ import annotations

from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from courier.exceptions import ValidationError


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
        generate_id("dlv") -> "dlv_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"


def to_validation_error(exc: PydanticValidationError) -> ValidationError:
    """Convert the first pydantic error into a Courier ValidationError.

    Args:
        exc: Error raised by model validation.

    Returns:
        ValidationError naming the offending field.
    """
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "body"
    message = first.get("msg", "invalid value")
    # pydantic prefixes messages raised from validators
    message = message.removeprefix("Value error, ")
    return ValidationError(field, message)
