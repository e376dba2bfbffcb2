"""Invoice totals, installment schedules, validation and submission payloads."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Collection, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_PRICING, PricingSettings
from .pricing import (
    LineField,
    LineItem,
    PricingContext,
    PricingError,
    build_line_item,
    round_currency,
)
from .storage import InvoiceRecord


LOGGER = logging.getLogger(__name__)

MIN_SPLIT_INSTALLMENTS = 2

# Discount and proration text appended to a stored line description.
_ANNOTATION_PATTERN = re.compile(r"\s*\((?:[\d.]+% Off|Prorated:).*$")


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Installment:
    amount: float
    due_date: Optional[date] = None


@dataclass(frozen=True)
class ValidationIssue:
    """A user-facing reason why an invoice cannot be submitted yet."""

    field: str
    message: str


@dataclass
class InvoiceDraft:
    """In-memory state of the invoice form."""

    parent_id: Optional[int] = None
    items: List[LineItem] = field(default_factory=lambda: [LineItem()])
    tax: float = 0.0
    notes: str = ""
    due_date: Optional[date] = None
    is_split_payment: bool = False
    installments: List[Installment] = field(
        default_factory=lambda: [Installment(0.0), Installment(0.0)]
    )

    @property
    def subtotal(self) -> float:
        return calculate_subtotal(self.items)

    @property
    def total(self) -> float:
        return calculate_total(self.items, self.tax)

    @property
    def effective_due_date(self) -> Optional[date]:
        """Single due date, or the first installment's date for split payments."""

        if self.is_split_payment:
            return self.installments[0].due_date if self.installments else None
        return self.due_date


def calculate_subtotal(items: Iterable[LineItem]) -> float:
    return sum(item.quantity * item.unit_price for item in items)


def calculate_total(items: Iterable[LineItem], tax: float = 0.0) -> float:
    return calculate_subtotal(items) + float(tax or 0.0)


def format_currency(amount: float) -> str:
    """Format *amount* as US dollars, e.g. ``$1,234.50`` or ``-$5.00``."""

    value = round_currency(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def within_tolerance(left: float, right: float, tolerance: float) -> bool:
    # The epsilon keeps a difference of exactly one cent inside the tolerance.
    return abs(left - right) <= tolerance + 1e-9


def validate_installments(
    installments: Sequence[Installment],
    total: float,
    *,
    rules: PricingSettings = DEFAULT_PRICING,
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    installment_total = sum(entry.amount or 0.0 for entry in installments)
    if not within_tolerance(installment_total, total, rules.total_tolerance):
        issues.append(
            ValidationIssue(
                "installments",
                f"Installment total ({format_currency(installment_total)}) must match "
                f"invoice total ({format_currency(total)})",
            )
        )
    if any(entry.due_date is None for entry in installments):
        issues.append(ValidationIssue("installments", "All installments must have a due date"))
    return issues


def auto_distribute_installments(total: float, count: int) -> List[float]:
    """Split *total* evenly; the rounding remainder goes to the first entry."""

    if count <= 0:
        raise ValueError("Installment count must be positive")
    share = round_currency(total / count)
    remainder = total - share * count
    amounts = [share] * count
    amounts[0] = round_currency(share + remainder)
    return amounts


def distribute_installments(
    installments: Sequence[Installment], total: float
) -> List[Installment]:
    """Return *installments* with amounts rebalanced and due dates kept."""

    amounts = auto_distribute_installments(total, len(installments))
    return [
        Installment(amount=amount, due_date=entry.due_date)
        for amount, entry in zip(amounts, installments)
    ]


def validate_invoice_draft(
    draft: InvoiceDraft,
    *,
    rules: PricingSettings = DEFAULT_PRICING,
    student_ids: Optional[Collection[int]] = None,
) -> List[ValidationIssue]:
    """Return everything that blocks submission; an empty list means valid.

    ``student_ids`` lists the children of the selected parent; when given,
    items billed to any other student are reported.
    """

    issues: List[ValidationIssue] = []
    if draft.parent_id is None:
        issues.append(ValidationIssue("parent", "Please select a parent"))
    if not draft.items:
        issues.append(ValidationIssue("items", "At least one item is required"))
    for index, item in enumerate(draft.items, start=1):
        if not item.description:
            issues.append(ValidationIssue("items", f"Item {index} needs a description"))
        if item.quantity <= 0:
            issues.append(ValidationIssue("items", f"Item {index} quantity must be positive"))
        duration = item.proration.duration_weeks if item.proration else item.duration_weeks
        if duration and item.missed_weeks > duration:
            issues.append(
                ValidationIssue(
                    "items",
                    f"Item {index} misses {item.missed_weeks} of {duration} weeks",
                )
            )
        elif item.unit_price < 0:
            issues.append(ValidationIssue("items", f"Item {index} price cannot be negative"))
        if (
            student_ids is not None
            and item.student_id is not None
            and item.student_id not in student_ids
        ):
            issues.append(
                ValidationIssue(
                    "items",
                    f"Item {index} student does not belong to the selected parent",
                )
            )
    if float(draft.tax or 0.0) < 0:
        issues.append(ValidationIssue("tax", "Tax cannot be negative"))

    if draft.is_split_payment:
        if len(draft.installments) < MIN_SPLIT_INSTALLMENTS:
            issues.append(
                ValidationIssue(
                    "installments",
                    f"Split payments need at least {MIN_SPLIT_INSTALLMENTS} installments",
                )
            )
        issues.extend(validate_installments(draft.installments, draft.total, rules=rules))
    elif draft.due_date is None:
        issues.append(ValidationIssue("due_date", "Please select a due date"))

    if issues:
        LOGGER.info("Invoice draft blocked by %d validation issue(s)", len(issues))
    return issues


def next_invoice_number(
    last_number: Optional[str], *, rules: PricingSettings = DEFAULT_PRICING
) -> str:
    """Return the number following *last_number* (``INV-0001`` when none)."""

    prefix = rules.invoice_prefix
    width = rules.invoice_number_width
    if not last_number:
        return f"{prefix}{1:0{width}d}"
    suffix = last_number[len(prefix):] if last_number.startswith(prefix) else last_number
    try:
        current = int(suffix)
    except ValueError:
        LOGGER.warning("Unrecognised invoice number '%s'; restarting sequence", last_number)
        current = 0
    return f"{prefix}{current + 1:0{width}d}"


@dataclass(frozen=True)
class InvoiceSummary:
    total: int
    total_revenue: float
    unpaid_amount: float
    pending: int


def summarize_invoices(invoices: Iterable[InvoiceRecord]) -> InvoiceSummary:
    count = 0
    revenue = 0.0
    unpaid = 0.0
    pending = 0
    for invoice in invoices:
        count += 1
        if invoice.status == InvoiceStatus.PAID.value:
            revenue += invoice.total
        else:
            unpaid += invoice.total
        if invoice.status == InvoiceStatus.UNPAID.value:
            pending += 1
    return InvoiceSummary(
        total=count,
        total_revenue=round_currency(revenue),
        unpaid_amount=round_currency(unpaid),
        pending=pending,
    )


# ----------------------------------------------------------------------
# JSON payloads
# ----------------------------------------------------------------------
class InvoiceItemPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    description: str = Field(..., min_length=1)
    quantity: float = Field(1, gt=0)
    unit_price: float = Field(..., ge=0, alias="unitPrice")
    student_id: Optional[int] = Field(None, alias="studentId")
    course_id: Optional[int] = Field(None, alias="courseId")
    duration_weeks: Optional[int] = Field(None, ge=1, alias="durationWeeks")
    missed_weeks: int = Field(0, ge=0, alias="missedWeeks")


class InstallmentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: float = Field(..., ge=0)
    due_date: date = Field(..., alias="dueDate")


class InvoiceCreatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    parent_id: int = Field(..., alias="parentId")
    status: InvoiceStatus = InvoiceStatus.UNPAID
    due_date: date = Field(..., alias="dueDate")
    is_split_payment: bool = Field(False, alias="isSplitPayment")
    installments: List[InstallmentPayload] = Field(default_factory=list)
    tax: float = Field(0, ge=0)
    notes: Optional[str] = None
    items: List[InvoiceItemPayload] = Field(..., min_length=1)


def build_submission_payload(draft: InvoiceDraft) -> InvoiceCreatePayload:
    """Validate *draft* and return the payload submitted for persistence.

    Callers are expected to check :func:`validate_invoice_draft` first; this
    raises ``pydantic.ValidationError`` if the draft is still incomplete.
    """

    return InvoiceCreatePayload.model_validate(
        {
            "parentId": draft.parent_id,
            "dueDate": draft.effective_due_date,
            "isSplitPayment": draft.is_split_payment,
            "installments": [
                {"amount": entry.amount, "dueDate": entry.due_date}
                for entry in draft.installments
            ]
            if draft.is_split_payment
            else [],
            "tax": draft.tax,
            "notes": draft.notes,
            "items": [item.to_payload() for item in draft.items],
        }
    )


class DraftItemEntry(BaseModel):
    """One line of an invoice draft file; every field is an optional edit.

    ``line`` (1-based) starts the edits from that line of the stored invoice
    instead of a blank item.
    """

    model_config = ConfigDict(populate_by_name=True)

    course_id: Optional[int] = Field(None, alias="courseId")
    description: Optional[str] = None
    unit_price: Optional[float] = Field(None, alias="unitPrice")
    student_id: Optional[int] = Field(None, alias="studentId")
    quantity: Optional[float] = None
    duration_weeks: Optional[int] = Field(None, alias="durationWeeks")
    missed_weeks: Optional[int] = Field(None, alias="missedWeeks")
    line: Optional[int] = Field(None, ge=1)


class DraftInstallmentEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Optional[float] = None
    due_date: Optional[date] = Field(None, alias="dueDate")


class InvoiceDraftFile(BaseModel):
    """Loose JSON representation of the invoice form, as saved by the CLI."""

    model_config = ConfigDict(populate_by_name=True)

    parent_id: Optional[int] = Field(None, alias="parentId")
    due_date: Optional[date] = Field(None, alias="dueDate")
    tax: float = 0.0
    notes: Optional[str] = None
    is_split_payment: bool = Field(False, alias="isSplitPayment")
    auto_distribute: bool = Field(False, alias="autoDistribute")
    installments: List[DraftInstallmentEntry] = Field(default_factory=list)
    items: List[DraftItemEntry] = Field(default_factory=list)


# Course selection resets description and price, so manual overrides follow it.
DRAFT_FIELD_ORDER = (
    LineField.COURSE_ID,
    LineField.DESCRIPTION,
    LineField.UNIT_PRICE,
    LineField.STUDENT_ID,
    LineField.QUANTITY,
    LineField.DURATION_WEEKS,
    LineField.MISSED_WEEKS,
)


def line_item_from_entry(
    entry: DraftItemEntry,
    context: PricingContext,
    *,
    stored: Sequence[LineItem] = (),
) -> LineItem:
    values: Dict[str, Any] = entry.model_dump(exclude_none=True)
    edits = [(name, values[name.value]) for name in DRAFT_FIELD_ORDER if name.value in values]
    if entry.line is None:
        return build_line_item(edits, context)
    if entry.line > len(stored):
        raise PricingError(f"Line {entry.line} does not exist on the stored invoice")
    line = stored[entry.line - 1]
    if not edits:
        return line
    # Annotations are rebuilt by the pricing chain.
    start = replace(line, base_description=_ANNOTATION_PATTERN.sub("", line.base_description))
    return build_line_item(edits, context, start=start)


def _parse_stored_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value[:10]) if value else None


def draft_from_invoice(record: InvoiceRecord) -> InvoiceDraft:
    """Load a stored invoice back into an editable draft.

    Each line is re-anchored on its stored unit price, so edits to a loaded
    line price from the stored figure rather than the catalogue.
    """

    return InvoiceDraft(
        parent_id=record.parent_id,
        items=[
            LineItem(
                base_description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                student_id=item.student_id,
                course_id=item.course_id,
                original_price=item.unit_price,
                duration_weeks=item.duration_weeks,
                missed_weeks=item.missed_weeks,
            )
            for item in record.items
        ],
        tax=record.tax,
        notes=record.notes,
        due_date=_parse_stored_date(record.due_date),
        is_split_payment=record.is_split_payment,
        installments=[
            Installment(amount=entry.amount, due_date=_parse_stored_date(entry.due_date))
            for entry in record.installments
        ],
    )


def _finish_draft(draft: InvoiceDraft, data: InvoiceDraftFile) -> InvoiceDraft:
    if draft.is_split_payment and data.auto_distribute and draft.installments:
        draft.installments = distribute_installments(draft.installments, draft.total)
    return draft


def draft_from_file(
    data: InvoiceDraftFile,
    context: PricingContext,
    *,
    default_notes: str = "",
    default_tax: float = 0.0,
) -> InvoiceDraft:
    """Replay a draft file through the pricing engine.

    Notes and tax fall back to the stored invoice defaults when the file does
    not set them.
    """

    draft = InvoiceDraft(
        parent_id=data.parent_id,
        items=[line_item_from_entry(entry, context) for entry in data.items],
        tax=data.tax if "tax" in data.model_fields_set else default_tax,
        notes=data.notes if data.notes is not None else default_notes,
        due_date=data.due_date,
        is_split_payment=data.is_split_payment,
        installments=[
            Installment(amount=entry.amount or 0.0, due_date=entry.due_date)
            for entry in data.installments
        ],
    )
    return _finish_draft(draft, data)


def revise_invoice_draft(
    record: InvoiceRecord, data: InvoiceDraftFile, context: PricingContext
) -> InvoiceDraft:
    """Apply a draft file on top of the stored invoice *record*.

    Fields the file leaves out keep their stored values. A non-empty
    ``items`` list replaces the stored lines; entries with ``line`` edit the
    matching stored line. The parent cannot change.
    """

    if data.parent_id is not None and data.parent_id != record.parent_id:
        raise PricingError(
            f"Invoice {record.invoice_number} belongs to parent {record.parent_id}, "
            f"not {data.parent_id}"
        )
    stored = draft_from_invoice(record)
    provided = data.model_fields_set
    items = stored.items
    if data.items:
        items = [
            line_item_from_entry(entry, context, stored=stored.items) for entry in data.items
        ]
    installments = stored.installments
    if "installments" in provided:
        installments = [
            Installment(amount=entry.amount or 0.0, due_date=entry.due_date)
            for entry in data.installments
        ]
    draft = InvoiceDraft(
        parent_id=record.parent_id,
        items=items,
        tax=data.tax if "tax" in provided else stored.tax,
        notes=data.notes if data.notes is not None else stored.notes,
        due_date=data.due_date if data.due_date is not None else stored.due_date,
        is_split_payment=(
            data.is_split_payment if "is_split_payment" in provided else stored.is_split_payment
        ),
        installments=installments,
    )
    return _finish_draft(draft, data)


__all__ = [
    "DRAFT_FIELD_ORDER",
    "DraftInstallmentEntry",
    "DraftItemEntry",
    "Installment",
    "InstallmentPayload",
    "InvoiceCreatePayload",
    "InvoiceDraft",
    "InvoiceDraftFile",
    "InvoiceItemPayload",
    "InvoiceStatus",
    "InvoiceSummary",
    "MIN_SPLIT_INSTALLMENTS",
    "ValidationIssue",
    "auto_distribute_installments",
    "build_submission_payload",
    "calculate_subtotal",
    "calculate_total",
    "distribute_installments",
    "draft_from_file",
    "draft_from_invoice",
    "format_currency",
    "line_item_from_entry",
    "next_invoice_number",
    "revise_invoice_draft",
    "summarize_invoices",
    "validate_installments",
    "validate_invoice_draft",
]
