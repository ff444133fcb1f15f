"""
Validation functions for configuration values.

Every validator returns the coerced value or raises ValidationError naming
the dotted field that failed.
"""

from typing import Any, List, Optional, Sequence

from .exceptions import ValidationError


def validate_positive_integer(
    value: Any,
    min_value: int = 1,
    max_value: Optional[int] = None,
    field_name: str = "value"
) -> int:
    """
    Validate that a value is an integer within bounds.

    Args:
        value: Value to validate
        min_value: Minimum allowed value (inclusive)
        max_value: Maximum allowed value (inclusive), None for no limit
        field_name: Name of the field being validated

    Returns:
        Validated integer value

    Raises:
        ValidationError: If validation fails
    """
    if isinstance(value, bool):
        raise ValidationError(
            f"{field_name} must be a valid integer, got {value}",
            field_name=field_name,
            value=value
        )
    try:
        int_value = int(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field_name} must be a valid integer, got {value}",
            field_name=field_name,
            value=value
        )
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(
            f"{field_name} must be a whole number, got {value}",
            field_name=field_name,
            value=value
        )
    if int_value < min_value:
        raise ValidationError(
            f"{field_name} must be >= {min_value}, got {int_value}",
            field_name=field_name,
            value=value
        )
    if max_value is not None and int_value > max_value:
        raise ValidationError(
            f"{field_name} must be <= {max_value}, got {int_value}",
            field_name=field_name,
            value=value
        )
    return int_value


def validate_positive_float(
    value: Any,
    min_value: float = 0.0,
    max_value: Optional[float] = None,
    field_name: str = "value"
) -> float:
    """
    Validate that a value is a number within bounds.

    Args:
        value: Value to validate
        min_value: Minimum allowed value (inclusive)
        max_value: Maximum allowed value (inclusive), None for no limit
        field_name: Name of the field being validated

    Returns:
        Validated float value

    Raises:
        ValidationError: If validation fails
    """
    if isinstance(value, bool):
        raise ValidationError(
            f"{field_name} must be a valid number, got {value}",
            field_name=field_name,
            value=value
        )
    try:
        float_value = float(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field_name} must be a valid number, got {value}",
            field_name=field_name,
            value=value
        )
    if float_value != float_value:
        raise ValidationError(
            f"{field_name} must not be NaN",
            field_name=field_name,
            value=value
        )
    if float_value < min_value:
        raise ValidationError(
            f"{field_name} must be >= {min_value}, got {float_value}",
            field_name=field_name,
            value=value
        )
    if max_value is not None and float_value > max_value:
        raise ValidationError(
            f"{field_name} must be <= {max_value}, got {float_value}",
            field_name=field_name,
            value=value
        )
    return float_value


def validate_fraction(value: Any, field_name: str = "value") -> float:
    """Validate a number in the closed interval [0, 1]."""
    return validate_positive_float(value, min_value=0.0, max_value=1.0, field_name=field_name)


def validate_bool(value: Any, field_name: str = "value") -> bool:
    """Validate that a value is a real boolean (TOML true/false)."""
    if not isinstance(value, bool):
        raise ValidationError(
            f"{field_name} must be a boolean, got {value!r}",
            field_name=field_name,
            value=value
        )
    return value


def validate_enum_choice(
    value: Any,
    choices: List[str],
    field_name: str = "value",
    case_sensitive: bool = True
) -> str:
    """
    Validate that a value is one of the allowed choices.

    Args:
        value: Value to validate
        choices: List of allowed choices
        field_name: Name of the field being validated
        case_sensitive: Whether the comparison should be case-sensitive

    Returns:
        Validated choice, normalised to the spelling in ``choices``

    Raises:
        ValidationError: If value is not in choices
    """
    str_value = str(value)
    if case_sensitive:
        if str_value in choices:
            return str_value
    else:
        for choice in choices:
            if choice.lower() == str_value.lower():
                return choice
    raise ValidationError(
        f"{field_name} must be one of {choices}, got {value}",
        field_name=field_name,
        value=value
    )


def validate_ascending(values: Sequence[float], names: Sequence[str], field_name: str) -> None:
    """
    Validate that ``values`` are strictly increasing.

    Used for tiered thresholds where each level must sit above the previous
    one (warning < critical < emergency).
    """
    for (lower, lower_name), (upper, upper_name) in zip(
        zip(values, names), list(zip(values, names))[1:]
    ):
        if not lower < upper:
            raise ValidationError(
                f"{field_name}.{lower_name} ({lower}) must be < "
                f"{field_name}.{upper_name} ({upper})",
                field_name=f"{field_name}.{upper_name}",
                value=upper
            )
