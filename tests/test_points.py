from decimal import Decimal

import pytest

from kidpoints.exceptions import ValidationError
from kidpoints.models import TaskPriority
from kidpoints.points import calculate_task_points, format_points, require_text, to_points


def test_to_points_accepts_whole_values() -> None:
    assert to_points(5) == 5
    assert to_points("12") == 12
    assert to_points(Decimal("3.0")) == 3


@pytest.mark.parametrize(
    "value",
    ["2.5", "abc", True, 1.0, "Infinity", "-Infinity", "NaN", "sNaN", Decimal("Infinity"), "1e30", 10**13],
)
def test_to_points_rejects_fractions_and_odd_types(value) -> None:
    with pytest.raises(ValidationError):
        to_points(value)


def test_priority_scaling_rounds_half_up() -> None:
    assert calculate_task_points(10, TaskPriority.LOW) == 8
    assert calculate_task_points(10, "medium") == 10
    assert calculate_task_points(10, TaskPriority.HIGH) == 13
    assert calculate_task_points(10, TaskPriority.URGENT) == 15


def test_unknown_priority_is_rejected() -> None:
    with pytest.raises(ValidationError):
        calculate_task_points(10, "whenever")


def test_require_text_strips_and_rejects_blank() -> None:
    assert require_text("  tidy up ", "Feedback") == "tidy up"
    with pytest.raises(ValidationError, match="Feedback is required"):
        require_text("   ", "Feedback")


def test_format_points() -> None:
    assert format_points(1250) == "1,250 pts"
    assert format_points(1) == "1 pt"


def test_require_text_rejects_non_text() -> None:
    with pytest.raises(ValidationError):
        require_text(42, "name")  # type: ignore[arg-type]
