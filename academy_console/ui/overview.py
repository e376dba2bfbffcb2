"""Rich renderers for quotes, invoice lists, the catalog and the wiki tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..services.invoices import (
    InvoiceDraft,
    InvoiceSummary,
    ValidationIssue,
    format_currency,
    summarize_invoices,
)
from ..services.storage import (
    AcademyRepository,
    CourseRecord,
    InvoiceRecord,
    ParentRecord,
    StudentRecord,
)
from ..services.wiki import EntryKind, TreeEntry, build_tree


STATUS_STYLES: Dict[str, str] = {
    "paid": "green",
    "unpaid": "yellow",
    "overdue": "red",
    "cancelled": "dim",
}


def render_quote(
    draft: InvoiceDraft,
    issues: Sequence[ValidationIssue] = (),
    *,
    invoice_number: Optional[str] = None,
) -> Group:
    """Build the renderable shown for an invoice draft."""

    items = Table(box=box.SIMPLE_HEAVY, expand=True)
    items.add_column("#", justify="right", style="dim")
    items.add_column("Description")
    items.add_column("Qty", justify="right")
    items.add_column("Unit price", justify="right")
    items.add_column("Total", justify="right", style="bold")
    for index, item in enumerate(draft.items, start=1):
        items.add_row(
            str(index),
            item.description or Text("(no description)", style="dim"),
            f"{item.quantity:g}",
            format_currency(item.unit_price),
            format_currency(item.line_total),
        )

    totals = Table.grid(padding=(0, 2))
    totals.add_column(style="dim")
    totals.add_column(justify="right", style="bold")
    totals.add_row("Subtotal", format_currency(draft.subtotal))
    totals.add_row("Tax", format_currency(draft.tax))
    totals.add_row("Total", format_currency(draft.total))

    parts: List[object] = [items, totals]
    if draft.is_split_payment and draft.installments:
        schedule = Table(title="Installments", box=box.MINIMAL, title_style="bold cyan")
        schedule.add_column("#", justify="right", style="dim")
        schedule.add_column("Amount", justify="right")
        schedule.add_column("Due")
        for index, entry in enumerate(draft.installments, start=1):
            schedule.add_row(
                str(index),
                format_currency(entry.amount),
                entry.due_date.isoformat() if entry.due_date else Text("missing", style="red"),
            )
        parts.append(schedule)
    elif draft.due_date is not None:
        parts.append(Text(f"Due {draft.due_date.isoformat()}", style="cyan"))

    if draft.notes:
        parts.append(Text(draft.notes, style="italic dim"))

    if issues:
        problems = Text()
        for issue in issues:
            problems.append("• ", style="red")
            problems.append(f"{issue.message}\n")
        parts.append(Panel(problems, title="Cannot submit yet", border_style="red", box=box.ROUNDED))

    title = invoice_number or "Invoice draft"
    return Group(Panel(Group(*parts), title=title, border_style="magenta", box=box.ROUNDED))


def render_invoice_list(
    invoices: Sequence[InvoiceRecord],
    parents: Dict[int, ParentRecord],
    summary: Optional[InvoiceSummary] = None,
) -> Group:
    if summary is None:
        summary = summarize_invoices(invoices)

    table = Table(box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Number", style="bold")
    table.add_column("Parent")
    table.add_column("Status")
    table.add_column("Due")
    table.add_column("Total", justify="right")
    for invoice in invoices:
        parent = parents.get(invoice.parent_id)
        status_style = STATUS_STYLES.get(invoice.status, "white")
        due = invoice.due_date or "-"
        if invoice.is_split_payment:
            due = f"{due} ({len(invoice.installments)} installments)"
        table.add_row(
            invoice.invoice_number,
            parent.name if parent else f"#{invoice.parent_id}",
            Text(invoice.status, style=status_style),
            due,
            format_currency(invoice.total),
        )

    metrics = Table.grid(expand=True, padding=(0, 1))
    metrics.add_column(style="dim")
    metrics.add_column(justify="right", style="bold")
    metrics.add_row("Invoices", str(summary.total))
    metrics.add_row("Revenue", format_currency(summary.total_revenue))
    metrics.add_row("Unpaid", format_currency(summary.unpaid_amount))
    metrics.add_row("Pending", str(summary.pending))
    stats = Panel(metrics, title="At a glance", border_style="magenta", box=box.ROUNDED)

    if not invoices:
        empty = Panel(
            "No invoices have been created yet.\n"
            "Use [bold]python run.py quote DRAFT.json --save[/bold] to issue one.",
            border_style="yellow",
            box=box.ROUNDED,
        )
        return Group(empty, stats)
    return Group(table, stats)


def build_wiki_tree(entries: Iterable[TreeEntry], *, title: str = "Wiki") -> Tree:
    tree = Tree(f"[bold cyan]{title}", guide_style="cyan")

    def _add(node: Tree, entry: TreeEntry) -> None:
        if entry.ref.kind is EntryKind.FOLDER:
            label = Text(f"📁 {entry.label}", style="bold bright_cyan")
        else:
            label = Text(f"📄 {entry.label}", style="white")
        label.append(f"  {entry.ref.draggable_id}", style="dim")
        branch = node.add(label)
        for child in entry.children:
            _add(branch, child)

    added = False
    for entry in entries:
        added = True
        _add(tree, entry)
    if not added:
        tree.add("[dim]No folders or pages yet")
    return tree


@dataclass
class CatalogSnapshot:
    parents: List[ParentRecord]
    students: List[StudentRecord]
    courses: List[CourseRecord]


class AcademyOverview:
    """Render the catalog, invoices and wiki stored in the repository."""

    def __init__(self, repository: AcademyRepository, *, console: Optional[Console] = None) -> None:
        self._repository = repository
        self._console = console or Console()

    def run(self) -> None:
        snapshot = self._collect_snapshot()
        console = self._console
        console.rule("[bold magenta]Academy Overview")

        if not snapshot.parents and not snapshot.courses:
            console.print(
                Panel(
                    "No parents or courses have been added yet.\n"
                    "Use [bold]python run.py add-parent[/bold] and "
                    "[bold]python run.py add-course[/bold] to get started.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        families = Panel(
            self._build_family_tree(snapshot),
            title="Families",
            border_style="cyan",
            box=box.ROUNDED,
        )
        courses = Panel(
            self._build_course_table(snapshot.courses),
            title="Courses",
            border_style="cyan",
            box=box.ROUNDED,
        )
        console.print(Columns([families, courses], expand=True, equal=True))

        invoices = self._repository.iter_invoices()
        parents = {parent.id: parent for parent in snapshot.parents}
        console.print(Rule(style="magenta"))
        console.print(render_invoice_list(invoices, parents))

    def show_wiki(self) -> None:
        entries = build_tree(self._repository.list_folders(), self._repository.list_pages())
        self._console.print(
            Panel(build_wiki_tree(entries), title="Wiki", border_style="cyan", box=box.ROUNDED)
        )

    @staticmethod
    def _build_family_tree(snapshot: CatalogSnapshot) -> Tree:
        tree = Tree("[bold cyan]Parents", guide_style="cyan")
        by_parent: Dict[Optional[int], List[StudentRecord]] = {}
        for student in snapshot.students:
            by_parent.setdefault(student.parent_id, []).append(student)

        for parent in snapshot.parents:
            label = Text(parent.name, style="bold")
            if parent.email:
                label.append(f"  {parent.email}", style="dim")
            branch = tree.add(label)
            children = by_parent.get(parent.id, [])
            if not children:
                branch.add("[dim]No students yet")
                continue
            for student in children:
                branch.add(AcademyOverview._build_student_label(student))

        orphans = by_parent.get(None, [])
        if orphans:
            branch = tree.add("[dim]Unassigned")
            for student in orphans:
                branch.add(AcademyOverview._build_student_label(student))
        return tree

    @staticmethod
    def _build_student_label(student: StudentRecord) -> Text:
        label = Text(f"{student.name} (#{student.id})", style="white")
        extras = []
        if student.referral_count:
            extras.append(f"{student.referral_count} referrals")
        if student.performance_discount:
            extras.append(f"{student.performance_discount:g}% performance")
        if extras:
            label.append("  ")
            label.append(" · ".join(extras), style="green")
        return label

    @staticmethod
    def _build_course_table(courses: Sequence[CourseRecord]) -> Table:
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Course")
        table.add_column("Price", justify="right")
        table.add_column("Duration")
        for course in courses:
            name = Text(course.name, style="white" if course.is_active else "dim")
            table.add_row(
                str(course.id),
                name,
                format_currency(course.price) if course.price is not None else "-",
                course.duration or "-",
            )
        return table

    def _collect_snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot(
            parents=list(self._repository.iter_parents()),
            students=list(self._repository.iter_students()),
            courses=list(self._repository.iter_courses()),
        )


__all__ = [
    "AcademyOverview",
    "build_wiki_tree",
    "render_invoice_list",
    "render_quote",
]
