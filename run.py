"""Entry-point for the Academy Console toolkit."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from pydantic import ValidationError
from rich.console import Console

from academy_console.bootstrap import BootstrapError, initialize_app
from academy_console.config import AppConfig
from academy_console.logging_utils import build_handlers, configure_logging
from academy_console.services.events import repository_event_emitter
from academy_console.services.invoices import (
    InvoiceDraft,
    InvoiceDraftFile,
    InvoiceStatus,
    ValidationIssue,
    build_submission_payload,
    draft_from_file,
    next_invoice_number,
    revise_invoice_draft,
    summarize_invoices,
    validate_invoice_draft,
)
from academy_console.services.pricing import PricingContext, PricingError
from academy_console.services.settings import SettingsStore
from academy_console.services.storage import AcademyRepository
from academy_console.services.wiki import (
    DropLocation,
    DropResult,
    WikiMoveError,
    build_tree,
    locate,
    parse_entry_id,
    plan_move,
    resolve_drop,
)
from academy_console.ui.overview import (
    AcademyOverview,
    build_wiki_tree,
    render_invoice_list,
    render_quote,
)


LOGGER = logging.getLogger("academy_console.cli")


cli = typer.Typer(add_completion=False, help="Academy Console management commands")


def _prepare_logging(storage_root: Path, *, debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    configure_logging(level, handlers=build_handlers(storage_root, console=debug))


def _bootstrap() -> AppConfig:
    try:
        return initialize_app()
    except BootstrapError as error:
        typer.echo(f"Initialization failed: {error}", err=True)
        raise typer.Exit(code=1) from error


def _open(ctx: typer.Context) -> Tuple[AppConfig, AcademyRepository]:
    debug = bool((ctx.obj or {}).get("debug"))
    config = _bootstrap()
    _prepare_logging(config.storage_root, debug=debug)
    repository = AcademyRepository(
        config, event_emitter=repository_event_emitter if debug else None
    )
    return config, repository


def _parse_date(value: Optional[str], *, param_hint: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as error:
        raise typer.BadParameter(
            f"'{value}' is not a date in YYYY-MM-DD format.", param_hint=param_hint
        ) from error


@cli.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", help="Log SQL and pricing events to the console"),
) -> None:
    """Show the academy overview when no explicit command is provided."""

    ctx.obj = {"debug": debug}
    if ctx.invoked_subcommand is None:
        ctx.invoke(overview, ctx=ctx)


@cli.command()
def init() -> None:
    """Create the storage directory and database schema."""

    config = _bootstrap()
    typer.echo(f"Storage ready at: {config.storage_root}")
    typer.echo(f"Database: {config.database_file}")


@cli.command()
def overview(ctx: typer.Context) -> None:
    """Render parents, students, courses and invoices."""

    _config, repository = _open(ctx)
    AcademyOverview(repository, console=Console()).run()


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------
@cli.command("add-parent")
def add_parent(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Parent name"),
    email: str = typer.Option("", help="Contact e-mail"),
) -> None:
    """Register a parent account."""

    _config, repository = _open(ctx)
    parent_id = repository.add_parent(name, email)
    typer.echo(f"Parent '{name}' added with id {parent_id}")


@cli.command("add-student")
def add_student(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Student name"),
    parent_id: Optional[int] = typer.Option(None, "--parent-id", help="Owning parent"),
    performance: float = typer.Option(
        0.0, "--performance", min=0.0, help="Performance discount in percent"
    ),
    referrals: int = typer.Option(0, "--referrals", min=0, help="Number of referrals"),
) -> None:
    """Register a student and their discount inputs."""

    _config, repository = _open(ctx)
    if parent_id is not None and repository.get_parent(parent_id) is None:
        raise typer.BadParameter(f"Parent {parent_id} does not exist.", param_hint="--parent-id")
    student_id = repository.add_student(
        name,
        parent_id=parent_id,
        performance_discount=performance,
        referral_count=referrals,
    )
    typer.echo(f"Student '{name}' added with id {student_id}")


@cli.command("add-course")
def add_course(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Course name"),
    price: Optional[float] = typer.Option(None, min=0.0, help="Course price"),
    duration: Optional[str] = typer.Option(None, help="Free-text duration, e.g. '8 weeks'"),
    inactive: bool = typer.Option(False, "--inactive", help="Hide from new invoices"),
) -> None:
    """Add a course to the catalog."""

    _config, repository = _open(ctx)
    if repository.find_course_by_name(name) is not None:
        raise typer.BadParameter(f"A course named '{name}' already exists.", param_hint="NAME")
    course_id = repository.add_course(name, price=price, duration=duration, is_active=not inactive)
    typer.echo(f"Course '{name}' added with id {course_id}")


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------
@cli.command()
def settings(
    ctx: typer.Context,
    notes: Optional[str] = typer.Option(None, help="Default notes for new invoices"),
    tax: Optional[float] = typer.Option(None, min=0.0, help="Default tax for new invoices"),
) -> None:
    """Show or update the invoice defaults."""

    config, _repository = _open(ctx)
    store = SettingsStore(config)
    current = store.load()
    if notes is not None:
        current.default_notes = notes
    if tax is not None:
        current.default_tax = tax
    if notes is not None or tax is not None:
        store.save(current)
        LOGGER.info("Invoice defaults updated in %s", store.path)
    typer.echo(f"Default notes: {current.default_notes or '(none)'}")
    typer.echo(f"Default tax: {current.default_tax:.2f}")


_DRAFT_ARGUMENT = typer.Argument(
    ...,
    exists=True,
    file_okay=True,
    dir_okay=False,
    resolve_path=True,
    help="Invoice draft JSON file",
)


def _read_draft_file(draft_path: Path) -> InvoiceDraftFile:
    try:
        raw = json.loads(draft_path.read_text(encoding="utf-8"))
        return InvoiceDraftFile.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as error:
        raise typer.BadParameter(f"Invalid draft file: {error}", param_hint="DRAFT_PATH") from error


def _pricing_context(config: AppConfig, repository: AcademyRepository) -> PricingContext:
    # Inactive courses cannot be billed on new lines.
    return PricingContext.from_records(
        repository.iter_courses(active_only=True),
        repository.iter_students(),
        rules=config.pricing,
    )


def _check_draft(
    draft: InvoiceDraft, config: AppConfig, repository: AcademyRepository
) -> List[ValidationIssue]:
    student_ids = None
    if draft.parent_id is not None:
        if repository.get_parent(draft.parent_id) is None:
            raise typer.BadParameter(
                f"Parent {draft.parent_id} does not exist.", param_hint="DRAFT_PATH"
            )
        student_ids = {student.id for student in repository.iter_students(draft.parent_id)}
    return validate_invoice_draft(draft, rules=config.pricing, student_ids=student_ids)


def _print_quote(
    draft: InvoiceDraft,
    issues: List[ValidationIssue],
    *,
    invoice_number: str,
    as_json: bool,
) -> None:
    if not as_json:
        Console().print(render_quote(draft, issues, invoice_number=invoice_number))
    elif issues:
        typer.echo(json.dumps({"issues": [issue.message for issue in issues]}, indent=2))
    else:
        typer.echo(build_submission_payload(draft).model_dump_json(by_alias=True, indent=2))


@cli.command()
def quote(
    ctx: typer.Context,
    draft_path: Path = _DRAFT_ARGUMENT,
    save: bool = typer.Option(False, "--save", help="Store the invoice when it is valid"),
    as_json: bool = typer.Option(False, "--json", help="Print the submission payload as JSON"),
) -> None:
    """Price an invoice draft and optionally store it."""

    config, repository = _open(ctx)
    draft_file = _read_draft_file(draft_path)
    defaults = SettingsStore(config).load()
    try:
        draft = draft_from_file(
            draft_file,
            _pricing_context(config, repository),
            default_notes=defaults.default_notes,
            default_tax=defaults.default_tax,
        )
    except PricingError as error:
        raise typer.BadParameter(str(error), param_hint="DRAFT_PATH") from error

    issues = _check_draft(draft, config, repository)
    invoice_number = next_invoice_number(repository.latest_invoice_number(), rules=config.pricing)
    _print_quote(draft, issues, invoice_number=invoice_number, as_json=as_json)

    if not save:
        return
    if issues:
        typer.echo("Invoice not saved: resolve the issues above first.", err=True)
        raise typer.Exit(code=1)

    payload = build_submission_payload(draft)
    invoice_id = repository.create_invoice(
        invoice_number=invoice_number,
        parent_id=payload.parent_id,
        items=[item.model_dump(by_alias=True) for item in payload.items],
        tax=payload.tax,
        due_date=payload.due_date,
        is_split_payment=payload.is_split_payment,
        installments=[(entry.amount, entry.due_date) for entry in payload.installments],
        notes=payload.notes or "",
        status=payload.status.value,
    )
    LOGGER.info("Saved invoice %s (id=%s)", invoice_number, invoice_id)
    typer.echo(f"Invoice {invoice_number} saved with id {invoice_id}")


@cli.command("invoice-edit")
def invoice_edit(
    ctx: typer.Context,
    invoice_id: int = typer.Argument(..., help="Invoice identifier"),
    draft_path: Path = _DRAFT_ARGUMENT,
    save: bool = typer.Option(False, "--save", help="Write the changes when they are valid"),
    as_json: bool = typer.Option(False, "--json", help="Print the submission payload as JSON"),
) -> None:
    """Re-quote a draft onto a stored invoice and optionally save it."""

    config, repository = _open(ctx)
    record = repository.get_invoice(invoice_id)
    if record is None:
        raise typer.BadParameter(f"Invoice {invoice_id} does not exist.", param_hint="INVOICE_ID")
    draft_file = _read_draft_file(draft_path)
    try:
        draft = revise_invoice_draft(record, draft_file, _pricing_context(config, repository))
    except PricingError as error:
        raise typer.BadParameter(str(error), param_hint="DRAFT_PATH") from error

    issues = _check_draft(draft, config, repository)
    _print_quote(draft, issues, invoice_number=record.invoice_number, as_json=as_json)

    if not save:
        return
    if issues:
        typer.echo("Invoice not updated: resolve the issues above first.", err=True)
        raise typer.Exit(code=1)

    payload = build_submission_payload(draft)
    repository.update_invoice(
        invoice_id,
        items=[item.model_dump(by_alias=True) for item in payload.items]
        if draft_file.items
        else None,
        tax=payload.tax,
        due_date=payload.due_date,
        notes=payload.notes or "",
        is_split_payment=payload.is_split_payment,
        installments=[(entry.amount, entry.due_date) for entry in payload.installments],
    )
    LOGGER.info("Updated invoice %s (id=%s)", record.invoice_number, invoice_id)
    typer.echo(f"Invoice {record.invoice_number} updated")


@cli.command()
def invoices(
    ctx: typer.Context,
    parent_id: Optional[int] = typer.Option(None, "--parent-id", help="Only this parent's invoices"),
) -> None:
    """List stored invoices with revenue figures."""

    _config, repository = _open(ctx)
    records = repository.iter_invoices(parent_id)
    parents = {parent.id: parent for parent in repository.iter_parents()}
    Console().print(render_invoice_list(records, parents, summarize_invoices(records)))


@cli.command("invoice-status")
def invoice_status(
    ctx: typer.Context,
    invoice_id: int = typer.Argument(..., help="Invoice identifier"),
    status: InvoiceStatus = typer.Argument(..., help="New status"),
    paid_date: Optional[str] = typer.Option(None, "--paid-date", help="YYYY-MM-DD"),
) -> None:
    """Change an invoice's status (paid invoices record a payment date)."""

    _config, repository = _open(ctx)
    if repository.get_invoice(invoice_id) is None:
        raise typer.BadParameter(f"Invoice {invoice_id} does not exist.", param_hint="INVOICE_ID")
    when = _parse_date(paid_date, param_hint="--paid-date")
    if status is InvoiceStatus.PAID and when is None:
        when = date.today()
    if status is not InvoiceStatus.PAID:
        when = None
    repository.update_invoice_status(invoice_id, status.value, paid_date=when)
    typer.echo(f"Invoice {invoice_id} marked {status.value}")


# ----------------------------------------------------------------------
# Wiki
# ----------------------------------------------------------------------
@cli.command()
def wiki(ctx: typer.Context) -> None:
    """Print the wiki sidebar tree."""

    _config, repository = _open(ctx)
    AcademyOverview(repository, console=Console()).show_wiki()


@cli.command("wiki-add-folder")
def wiki_add_folder(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Folder name"),
    parent_id: Optional[int] = typer.Option(None, "--parent-id", help="Parent folder"),
) -> None:
    """Create a wiki folder at the root or inside another folder."""

    _config, repository = _open(ctx)
    if parent_id is not None and repository.get_folder(parent_id) is None:
        raise typer.BadParameter(f"Folder {parent_id} does not exist.", param_hint="--parent-id")
    folder_id = repository.add_folder(name, parent_id)
    typer.echo(f"Folder '{name}' created as folder-{folder_id}")


@cli.command("wiki-add-page")
def wiki_add_page(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="Page title"),
    folder_id: Optional[int] = typer.Option(None, "--folder-id", help="Containing folder"),
    parent_page_id: Optional[int] = typer.Option(None, "--parent-page-id", help="Parent page"),
) -> None:
    """Create a wiki page at the root, in a folder or under another page."""

    _config, repository = _open(ctx)
    if folder_id is not None and repository.get_folder(folder_id) is None:
        raise typer.BadParameter(f"Folder {folder_id} does not exist.", param_hint="--folder-id")
    try:
        node_id = repository.add_page(title, folder_id=folder_id, parent_node_id=parent_page_id)
    except ValueError as error:
        raise typer.BadParameter(str(error), param_hint="--parent-page-id") from error
    typer.echo(f"Page '{title}' created as node-{node_id}")


@cli.command("wiki-move")
def wiki_move(
    ctx: typer.Context,
    entry: str = typer.Argument(..., help="Entry to move, e.g. folder-3 or node-7"),
    to: str = typer.Option("root", "--to", help="Destination: root, folder-<id> or page-<id>"),
    index: Optional[int] = typer.Option(
        None, "--index", min=0, help="Position in the destination list (default: end)"
    ),
    combine: Optional[str] = typer.Option(
        None, "--combine", help="Drop onto an entry instead (folders accept it at the top)"
    ),
) -> None:
    """Move a wiki folder or page the way the sidebar drag-and-drop does."""

    _config, repository = _open(ctx)
    folders = repository.list_folders()
    pages = repository.list_pages()
    try:
        ref = parse_entry_id(entry)
        source = locate(folders, pages, ref)
        destination = None if combine is not None else DropLocation(to, index)
        request = resolve_drop(
            DropResult(
                draggable_id=entry,
                source=source,
                destination=destination,
                combine=combine,
            )
        )
        if request is None:
            typer.echo("Nothing to move.")
            return
        plan = plan_move(folders, pages, request)
    except WikiMoveError as error:
        raise typer.BadParameter(str(error), param_hint="ENTRY") from error

    repository.apply_wiki_move(plan)
    typer.echo(f"Moved {entry} to position {plan.index}")
    entries = build_tree(repository.list_folders(), repository.list_pages())
    Console().print(build_wiki_tree(entries))


if __name__ == "__main__":
    cli()
