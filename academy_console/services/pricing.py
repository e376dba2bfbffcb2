"""Line-item pricing: catalog lookup, discounts, proration and descriptions.

Every edit to a line item goes through :func:`recompute_line_item`, which
returns a new :class:`LineItem` derived from the item's ``original_price``
anchor. The steps always run in the same order:

1. apply the edited field (course selection resets the anchor),
2. capture ``original_price`` if no chain has run for the item yet,
3. apply the student's referral + performance discount,
4. apply week-based proration.

Annotations are kept as structured :class:`DiscountDetails` and
:class:`ProrationDetails` values; :attr:`LineItem.description` renders them on
demand, so repeated recalculation never stacks text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from ..config import DEFAULT_PRICING, PricingSettings
from .events import emit_pricing_event
from .storage import CourseRecord, StudentRecord


LOGGER = logging.getLogger(__name__)

_DURATION_PATTERN = re.compile(r"(\d+)\s*week", re.IGNORECASE)


class PricingError(ValueError):
    """Raised when an edit references unknown catalog data or is malformed."""


class LineField(str, Enum):
    DESCRIPTION = "description"
    QUANTITY = "quantity"
    UNIT_PRICE = "unit_price"
    STUDENT_ID = "student_id"
    COURSE_ID = "course_id"
    DURATION_WEEKS = "duration_weeks"
    MISSED_WEEKS = "missed_weeks"


def round_currency(value: float) -> float:
    """Round *value* to cents, normalising ``-0.0``."""

    return round(float(value), 2) + 0.0


def format_percent(value: float) -> str:
    """Render a percentage without a trailing ``.0`` (``15`` not ``15.0``)."""

    number = float(value)
    if number.is_integer():
        return str(int(number))
    return f"{number:g}"


def parse_duration_weeks(duration: Optional[str]) -> Optional[int]:
    """Extract ``N`` from free text such as ``"8 weeks"`` or ``"12-Week camp"``."""

    if not duration:
        return None
    match = _DURATION_PATTERN.search(duration)
    return int(match.group(1)) if match else None


@dataclass(frozen=True)
class DiscountDetails:
    referral_percent: float
    performance_percent: float

    @property
    def total_percent(self) -> float:
        return self.referral_percent + self.performance_percent

    @property
    def text(self) -> str:
        return (
            f"{format_percent(self.total_percent)}% Off "
            f"({format_percent(self.referral_percent)}% Ref + "
            f"{format_percent(self.performance_percent)}% Perf)"
        )


@dataclass(frozen=True)
class ProrationDetails:
    missed_weeks: int
    duration_weeks: int

    @property
    def text(self) -> str:
        return f"(Prorated: {self.missed_weeks}/{self.duration_weeks} weeks missed)"


@dataclass(frozen=True)
class LineItem:
    """One billable row. Treat instances as values; edits return new items."""

    base_description: str = ""
    quantity: float = 1.0
    unit_price: float = 0.0
    student_id: Optional[int] = None
    course_id: Optional[int] = None
    original_price: Optional[float] = None
    duration_weeks: Optional[int] = None
    missed_weeks: int = 0
    discount: Optional[DiscountDetails] = None
    proration: Optional[ProrationDetails] = None

    @property
    def description(self) -> str:
        parts = [self.base_description.strip()]
        if self.discount is not None:
            parts.append(f"({self.discount.text})")
        if self.proration is not None:
            parts.append(self.proration.text)
        return " ".join(part for part in parts if part)

    @property
    def discount_details(self) -> Optional[str]:
        return self.discount.text if self.discount is not None else None

    @property
    def line_total(self) -> float:
        return round_currency(self.quantity * self.unit_price)

    def to_payload(self) -> Dict[str, Any]:
        """Return the JSON shape submitted to the invoice endpoint."""

        return {
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "studentId": self.student_id,
            "courseId": self.course_id,
            "durationWeeks": self.duration_weeks,
            "missedWeeks": self.missed_weeks,
        }


@dataclass(frozen=True)
class PricingContext:
    """Reference data consulted while recomputing line items."""

    courses: Dict[int, CourseRecord] = field(default_factory=dict)
    students: Dict[int, StudentRecord] = field(default_factory=dict)
    rules: PricingSettings = DEFAULT_PRICING

    @classmethod
    def from_records(
        cls,
        courses: Iterable[CourseRecord] = (),
        students: Iterable[StudentRecord] = (),
        *,
        rules: PricingSettings = DEFAULT_PRICING,
    ) -> "PricingContext":
        return cls(
            courses={course.id: course for course in courses},
            students={student.id: student for student in students},
            rules=rules,
        )

    def course(self, course_id: Optional[int]) -> Optional[CourseRecord]:
        if course_id is None:
            return None
        return self.courses.get(course_id)

    def student(self, student_id: Optional[int]) -> Optional[StudentRecord]:
        if student_id is None:
            return None
        return self.students.get(student_id)


# ----------------------------------------------------------------------
# Discount calculator
# ----------------------------------------------------------------------
def referral_discount_percent(
    referral_count: int, rules: PricingSettings = DEFAULT_PRICING
) -> float:
    """Return ``min(referral_count * step, cap)``."""

    if referral_count < 0:
        raise PricingError("Referral count cannot be negative")
    return min(referral_count * rules.referral_step_percent, rules.referral_cap_percent)


def compute_discount(
    student: Optional[StudentRecord], rules: PricingSettings = DEFAULT_PRICING
) -> Optional[DiscountDetails]:
    """Return the stacked discount for *student*, or ``None`` when it is zero."""

    if student is None:
        return None
    details = DiscountDetails(
        referral_percent=referral_discount_percent(student.referral_count, rules),
        performance_percent=float(student.performance_discount or 0.0),
    )
    if details.total_percent <= 0:
        return None
    return details


def apply_discount(price: float, discount: Optional[DiscountDetails]) -> float:
    if discount is None:
        return round_currency(price)
    amount = price * (discount.total_percent / 100.0)
    discounted = round_currency(price - amount)
    if discounted < 0:
        LOGGER.warning(
            "Discount of %s%% exceeds the price %.2f; flooring at 0.00",
            format_percent(discount.total_percent),
            price,
        )
        return 0.0
    return discounted


# ----------------------------------------------------------------------
# Proration calculator
# ----------------------------------------------------------------------
def resolve_duration_weeks(item: LineItem, course: Optional[CourseRecord]) -> Optional[int]:
    """Manual duration wins, then the course's parsed duration, else ``None``."""

    if item.duration_weeks and item.duration_weeks > 0:
        return item.duration_weeks
    if course is not None:
        return parse_duration_weeks(course.duration)
    return None


def prorate(price: float, duration_weeks: Optional[int], missed_weeks: int) -> float:
    """Return ``price`` reduced by ``missed_weeks`` out of ``duration_weeks``."""

    if not duration_weeks or duration_weeks <= 0 or missed_weeks <= 0:
        return round_currency(price)
    return round_currency(price - (price / duration_weeks) * missed_weeks)


# ----------------------------------------------------------------------
# Recompute
# ----------------------------------------------------------------------
def _coerce_optional_id(value: Any, label: str) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise PricingError(f"Invalid {label} identifier: {value!r}") from error


def _coerce_number(value: Any, label: str) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise PricingError(f"{label} must be a number, got {value!r}") from error


def _coerce_weeks(value: Any, label: str) -> int:
    weeks = _coerce_number(value, label)
    if weeks < 0:
        raise PricingError(f"{label} cannot be negative")
    if not weeks.is_integer():
        raise PricingError(f"{label} must be a whole number, got {value!r}")
    return int(weeks)


def _apply_edit(
    item: LineItem, changed: LineField, value: Any, context: PricingContext
) -> LineItem:
    if changed is LineField.COURSE_ID:
        course_id = _coerce_optional_id(value, "course")
        if course_id is None:
            return replace(item, course_id=None)
        course = context.course(course_id)
        if course is None:
            raise PricingError(f"Unknown course {course_id}")
        price = float(course.price or 0.0)
        return replace(
            item,
            course_id=course_id,
            base_description=course.name,
            unit_price=price,
            original_price=price,
            duration_weeks=parse_duration_weeks(course.duration),
        )
    if changed is LineField.STUDENT_ID:
        student_id = _coerce_optional_id(value, "student")
        if student_id is not None and context.student(student_id) is None:
            raise PricingError(f"Unknown student {student_id}")
        return replace(item, student_id=student_id)
    if changed is LineField.UNIT_PRICE:
        price = _coerce_number(value, "Unit price")
        if price < 0:
            raise PricingError("Unit price cannot be negative")
        # A manual price becomes the new anchor for the chain.
        return replace(item, unit_price=price, original_price=price)
    if changed is LineField.DESCRIPTION:
        return replace(item, base_description=str(value or ""))
    if changed is LineField.QUANTITY:
        return replace(item, quantity=_coerce_number(value, "Quantity"))
    if changed is LineField.DURATION_WEEKS:
        weeks = _coerce_weeks(value, "Duration weeks")
        return replace(item, duration_weeks=weeks or None)
    if changed is LineField.MISSED_WEEKS:
        return replace(item, missed_weeks=_coerce_weeks(value, "Missed weeks"))
    raise PricingError(f"Unsupported line item field: {changed!r}")  # pragma: no cover


def reprice(item: LineItem, context: PricingContext) -> LineItem:
    """Re-derive price and annotations of *item* from its anchor."""

    original = item.original_price
    if original is None:
        original = item.unit_price

    discount = None
    if original > 0:
        discount = compute_discount(context.student(item.student_id), context.rules)
    price = apply_discount(original, discount)

    duration = resolve_duration_weeks(item, context.course(item.course_id))
    proration = None
    if duration and item.missed_weeks > 0:
        proration = ProrationDetails(missed_weeks=item.missed_weeks, duration_weeks=duration)
        price = prorate(price, duration, item.missed_weeks)

    return replace(
        item,
        original_price=original,
        unit_price=price,
        discount=discount,
        proration=proration,
    )


def recompute_line_item(
    item: LineItem,
    changed: LineField | str,
    value: Any,
    context: PricingContext,
) -> LineItem:
    """Return a new item with ``changed`` set to ``value`` and prices re-derived."""

    try:
        changed_field = LineField(changed)
    except ValueError as error:
        raise PricingError(f"Unsupported line item field: {changed!r}") from error

    edited = _apply_edit(item, changed_field, value, context)
    result = reprice(edited, context)
    emit_pricing_event(
        "Recomputed line item",
        context={"field": changed_field.value},
        payload={
            "original_price": result.original_price,
            "unit_price": result.unit_price,
            "discount": result.discount_details,
            "missed_weeks": result.missed_weeks,
            "duration_weeks": result.proration.duration_weeks if result.proration else None,
        },
    )
    return result


def build_line_item(
    edits: Iterable[Tuple[LineField | str, Any]],
    context: PricingContext,
    *,
    start: Optional[LineItem] = None,
) -> LineItem:
    """Apply ``edits`` in order to a blank item (or ``start``)."""

    item = start if start is not None else LineItem()
    for changed, value in edits:
        item = recompute_line_item(item, changed, value, context)
    return item


__all__ = [
    "DiscountDetails",
    "LineField",
    "LineItem",
    "PricingContext",
    "PricingError",
    "ProrationDetails",
    "apply_discount",
    "build_line_item",
    "compute_discount",
    "format_percent",
    "parse_duration_weeks",
    "prorate",
    "recompute_line_item",
    "referral_discount_percent",
    "reprice",
    "resolve_duration_weeks",
    "round_currency",
]
