"""Utilities for working with point values in KidPoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from .exceptions import ValidationError
from .models import as_utc

PointsLike = Union[int, str, Decimal]

MAX_POINTS = 10**12

PRIORITY_MULTIPLIERS = {
    "low": Decimal("0.75"),
    "medium": Decimal("1.0"),
    "high": Decimal("1.25"),
    "urgent": Decimal("1.5"),
}


def to_points(value: PointsLike) -> int:
    """Convert ``value`` to a whole number of points."""

    if isinstance(value, bool):
        raise ValidationError("Points must be a whole number, not a boolean.")
    if isinstance(value, int):
        return _within_range(value)
    if isinstance(value, (str, Decimal)):
        try:
            number = Decimal(value)
            if not number.is_finite():
                raise ValidationError(f"Points must be a finite number: {value!r}")
            if number != number.to_integral_value():
                raise ValidationError(f"Points must be a whole number: {value!r}")
        except ArithmeticError as exc:
            raise ValidationError(f"Invalid point value: {value!r}") from exc
        return int(_within_range(number))
    raise ValidationError(f"Unsupported point type: {type(value)!r}")


def _within_range(points):
    if abs(points) > MAX_POINTS:
        raise ValidationError(f"Points must be between -{MAX_POINTS:,} and {MAX_POINTS:,}.")
    return points


def require_positive(points: int, *, allow_zero: bool = False) -> int:
    """Ensure ``points`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if points < 0:
            raise ValidationError("Points must be zero or greater.")
    elif points <= 0:
        raise ValidationError("Points must be greater than zero.")
    return points


def require_moment(value: Optional[datetime], field: str) -> Optional[datetime]:
    """Return ``value`` as naive UTC, rejecting anything that is not a datetime."""

    if value is not None and not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a date and time.")
    return as_utc(value)


def require_text(value: str | None, field: str) -> str:
    """Return ``value`` stripped, rejecting blank input."""

    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{field} must be text.")
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required.")
    return text


def calculate_task_points(base_points: int, priority: str = "medium") -> int:
    """Scale ``base_points`` by the task priority, rounding half up."""

    require_positive(base_points, allow_zero=True)
    try:
        multiplier = PRIORITY_MULTIPLIERS[getattr(priority, "value", priority)]
    except KeyError as exc:
        raise ValidationError(f"Unknown priority: {priority!r}") from exc
    scaled = (Decimal(base_points) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(scaled)


def format_points(points: int) -> str:
    """Return ``points`` as a display string (e.g. ``1,250 pts``)."""

    unit = "pt" if abs(points) == 1 else "pts"
    return f"{points:,} {unit}"
