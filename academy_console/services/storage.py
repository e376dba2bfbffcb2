"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import AppConfig


@dataclass(frozen=True)
class ParentRecord:
    id: int
    name: str
    email: str


@dataclass(frozen=True)
class StudentRecord:
    id: int
    parent_id: Optional[int]
    name: str
    performance_discount: float
    referral_count: int


@dataclass(frozen=True)
class CourseRecord:
    id: int
    name: str
    price: Optional[float]
    duration: Optional[str]
    is_active: bool = True


@dataclass(frozen=True)
class InvoiceItemRecord:
    id: int
    invoice_id: int
    position: int
    description: str
    quantity: float
    unit_price: float
    total: float
    student_id: Optional[int]
    course_id: Optional[int]
    duration_weeks: Optional[int]
    missed_weeks: int


@dataclass(frozen=True)
class InstallmentRecord:
    id: int
    invoice_id: int
    position: int
    amount: float
    due_date: Optional[str]


@dataclass(frozen=True)
class InvoiceRecord:
    id: int
    invoice_number: str
    parent_id: int
    status: str
    due_date: Optional[str]
    paid_date: Optional[str]
    is_split_payment: bool
    subtotal: float
    tax: float
    total: float
    notes: str
    created_at: str
    items: Tuple[InvoiceItemRecord, ...] = field(default_factory=tuple)
    installments: Tuple[InstallmentRecord, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class WikiFolderRecord:
    id: int
    name: str
    parent_id: Optional[int]
    position: int


@dataclass(frozen=True)
class WikiNodeRecord:
    id: int
    title: str
    folder_id: Optional[int]
    parent_node_id: Optional[int]
    position: int


LOGGER = logging.getLogger(__name__)


_INVOICE_COLUMNS = """
    id,
    invoice_number,
    parent_id,
    status,
    due_date,
    paid_date,
    is_split_payment,
    subtotal,
    tax,
    total,
    notes,
    created_at
"""


def _isoformat(value: Optional[date | str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class AcademyRepository:
    """Repository exposing CRUD helpers for the catalog, invoices and the wiki."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting debug events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured debug event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:  # pragma: no cover - instrumentation only
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                "DB_QUERY",
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        self._execute(
            connection,
            "PRAGMA foreign_keys = ON",
            action="pragma_foreign_keys",
        )
        return connection

    @contextlib.contextmanager
    def _session(self):
        """Yield a connection that commits on success and is always closed."""

        connection = self._connect()
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def _next_position(
        self,
        connection: sqlite3.Connection,
        table: str,
        filters: Optional[Dict[str, Optional[int]]] = None,
    ) -> int:
        query = f"SELECT COALESCE(MAX(position), -1) + 1 FROM {table}"
        clauses: List[str] = []
        params: List[object] = []
        for column, value in (filters or {}).items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        cursor = self._execute(
            connection,
            query,
            params,
            action=f"{table}.next_position",
            table=table,
        )
        row = cursor.fetchone()
        next_value = int(row[0] or 0) if row is not None else 0
        LOGGER.debug("Computed next position for %s (filters=%s) -> %s", table, filters, next_value)
        return next_value

    def _fetch_one(self, statement: str, parameters: Sequence[Any], *, action: str, table: str):
        with self._session() as connection:
            cursor = self._execute(connection, statement, parameters, action=action, table=table)
            return cursor.fetchone()

    def _fetch_all(
        self, statement: str, parameters: Sequence[Any] | None, *, action: str, table: str
    ) -> List[sqlite3.Row]:
        with self._session() as connection:
            cursor = self._execute(connection, statement, parameters, action=action, table=table)
            return cursor.fetchall()

    # ------------------------------------------------------------------
    # Parents & students
    # ------------------------------------------------------------------
    def add_parent(self, name: str, email: str = "") -> int:
        LOGGER.debug("Adding parent '%s'", name)
        with self._track_db_event("add_parent", table="parents") as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO parents(name, email) VALUES (?, ?)",
                    (name, email),
                    action="parents.insert",
                    table="parents",
                )
                event["parent_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def get_parent(self, parent_id: int) -> Optional[ParentRecord]:
        row = self._fetch_one(
            "SELECT id, name, email FROM parents WHERE id = ?",
            (parent_id,),
            action="parents.get",
            table="parents",
        )
        return ParentRecord(**row) if row else None

    def iter_parents(self) -> Iterable[ParentRecord]:
        rows = self._fetch_all(
            "SELECT id, name, email FROM parents ORDER BY name, id",
            None,
            action="parents.iter",
            table="parents",
        )
        for row in rows:
            yield ParentRecord(**row)

    def add_student(
        self,
        name: str,
        *,
        parent_id: Optional[int] = None,
        performance_discount: float = 0.0,
        referral_count: int = 0,
    ) -> int:
        if referral_count < 0:
            raise ValueError("Referral count cannot be negative")
        LOGGER.debug(
            "Adding student '%s' (parent_id=%s, performance=%s, referrals=%s)",
            name,
            parent_id,
            performance_discount,
            referral_count,
        )
        with self._track_db_event("add_student", table="students", parent_id=parent_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    """
                    INSERT INTO students(parent_id, name, performance_discount, referral_count)
                    VALUES (?, ?, ?, ?)
                    """,
                    (parent_id, name, float(performance_discount), int(referral_count)),
                    action="students.insert",
                    table="students",
                )
                event["student_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    def get_student(self, student_id: int) -> Optional[StudentRecord]:
        row = self._fetch_one(
            """
            SELECT id, parent_id, name, performance_discount, referral_count
            FROM students WHERE id = ?
            """,
            (student_id,),
            action="students.get",
            table="students",
        )
        return StudentRecord(**row) if row else None

    def iter_students(self, parent_id: Optional[int] = None) -> Iterable[StudentRecord]:
        where = ""
        params: Tuple[Any, ...] = ()
        if parent_id is not None:
            where = " WHERE parent_id = ?"
            params = (parent_id,)
        rows = self._fetch_all(
            "SELECT id, parent_id, name, performance_discount, referral_count "
            f"FROM students{where} ORDER BY name, id",
            params,
            action="students.iter",
            table="students",
        )
        for row in rows:
            yield StudentRecord(**row)

    def update_student(
        self,
        student_id: int,
        *,
        performance_discount: Optional[float] = None,
        referral_count: Optional[int] = None,
    ) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        if performance_discount is not None:
            assignments.append("performance_discount = ?")
            params.append(float(performance_discount))
        if referral_count is not None:
            if referral_count < 0:
                raise ValueError("Referral count cannot be negative")
            assignments.append("referral_count = ?")
            params.append(int(referral_count))
        if not assignments:
            LOGGER.debug("No changes requested for student id=%s", student_id)
            return
        params.append(student_id)
        with self._track_db_event("update_student", student_id=student_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE students SET " + ", ".join(assignments) + " WHERE id = ?",
                    params,
                    action="students.update",
                    table="students",
                )
                event["fields_changed"] = len(assignments)
                event["rowcount"] = max(cursor.rowcount, 0)

    # ------------------------------------------------------------------
    # Courses
    # ------------------------------------------------------------------
    def add_course(
        self,
        name: str,
        *,
        price: Optional[float] = None,
        duration: Optional[str] = None,
        is_active: bool = True,
    ) -> int:
        LOGGER.debug("Adding course '%s' (price=%s, duration=%s)", name, price, duration)
        with self._track_db_event("add_course", table="courses", name=name) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO courses(name, price, duration, is_active) VALUES (?, ?, ?, ?)",
                    (name, price, duration, 1 if is_active else 0),
                    action="courses.insert",
                    table="courses",
                )
                event["course_id"] = int(cursor.lastrowid)
                return int(cursor.lastrowid)

    @staticmethod
    def _course_from_row(row: sqlite3.Row) -> CourseRecord:
        return CourseRecord(
            id=int(row["id"]),
            name=row["name"],
            price=float(row["price"]) if row["price"] is not None else None,
            duration=row["duration"],
            is_active=bool(row["is_active"]),
        )

    def get_course(self, course_id: int) -> Optional[CourseRecord]:
        row = self._fetch_one(
            "SELECT id, name, price, duration, is_active FROM courses WHERE id = ?",
            (course_id,),
            action="courses.get",
            table="courses",
        )
        return self._course_from_row(row) if row else None

    def find_course_by_name(self, name: str) -> Optional[CourseRecord]:
        row = self._fetch_one(
            "SELECT id, name, price, duration, is_active FROM courses WHERE name = ?",
            (name,),
            action="courses.lookup_by_name",
            table="courses",
        )
        return self._course_from_row(row) if row else None

    def iter_courses(self, *, active_only: bool = False) -> Iterable[CourseRecord]:
        where = " WHERE is_active = 1" if active_only else ""
        rows = self._fetch_all(
            f"SELECT id, name, price, duration, is_active FROM courses{where} ORDER BY name, id",
            None,
            action="courses.iter",
            table="courses",
        )
        for row in rows:
            yield self._course_from_row(row)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    def latest_invoice_number(self) -> Optional[str]:
        row = self._fetch_one(
            "SELECT invoice_number FROM invoices ORDER BY created_at DESC, id DESC LIMIT 1",
            (),
            action="invoices.latest_number",
            table="invoices",
        )
        return row["invoice_number"] if row else None

    def _insert_invoice_lines(
        self,
        connection: sqlite3.Connection,
        invoice_id: int,
        items: Sequence[Dict[str, Any]],
    ) -> None:
        for index, item in enumerate(items):
            quantity = float(item["quantity"])
            unit_price = float(item["unitPrice"])
            self._execute(
                connection,
                """
                INSERT INTO invoice_items(
                    invoice_id,
                    position,
                    description,
                    quantity,
                    unit_price,
                    total,
                    student_id,
                    course_id,
                    duration_weeks,
                    missed_weeks
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice_id,
                    index,
                    item["description"],
                    quantity,
                    unit_price,
                    round(quantity * unit_price, 2),
                    item.get("studentId"),
                    item.get("courseId"),
                    item.get("durationWeeks"),
                    int(item.get("missedWeeks") or 0),
                ),
                action="invoice_items.insert",
                table="invoice_items",
            )

    def _insert_installments(
        self,
        connection: sqlite3.Connection,
        invoice_id: int,
        installments: Sequence[Tuple[float, Optional[date | str]]],
    ) -> None:
        for index, (amount, installment_due) in enumerate(installments):
            self._execute(
                connection,
                """
                INSERT INTO installments(invoice_id, position, amount, due_date)
                VALUES (?, ?, ?, ?)
                """,
                (invoice_id, index, float(amount), _isoformat(installment_due)),
                action="installments.insert",
                table="installments",
            )

    def create_invoice(
        self,
        *,
        invoice_number: str,
        parent_id: int,
        items: Sequence[Dict[str, Any]],
        tax: float = 0.0,
        due_date: Optional[date | str] = None,
        is_split_payment: bool = False,
        installments: Sequence[Tuple[float, Optional[date | str]]] = (),
        notes: str = "",
        status: str = "unpaid",
    ) -> int:
        """Persist an invoice along with its line items and installments.

        ``items`` uses the submission payload shape (``description``,
        ``quantity``, ``unitPrice``, ``studentId``, ``courseId``,
        ``durationWeeks``, ``missedWeeks``). Subtotal and total are derived
        here so stored figures always agree with the stored lines.
        """

        subtotal = round(
            sum(float(item["quantity"]) * float(item["unitPrice"]) for item in items), 2
        )
        total = round(subtotal + float(tax), 2)
        created_at = datetime.now(timezone.utc).isoformat()
        with self._track_db_event(
            "create_invoice",
            table="invoices",
            invoice_number=invoice_number,
            item_count=len(items),
            installment_count=len(installments),
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    """
                    INSERT INTO invoices(
                        invoice_number,
                        parent_id,
                        status,
                        due_date,
                        is_split_payment,
                        subtotal,
                        tax,
                        total,
                        notes,
                        created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        invoice_number,
                        parent_id,
                        status,
                        _isoformat(due_date),
                        1 if is_split_payment else 0,
                        subtotal,
                        float(tax),
                        total,
                        notes or "",
                        created_at,
                    ),
                    action="invoices.insert",
                    table="invoices",
                )
                invoice_id = int(cursor.lastrowid)
                self._insert_invoice_lines(connection, invoice_id, items)
                self._insert_installments(connection, invoice_id, installments)
                event.update({"invoice_id": invoice_id, "total": total})
                LOGGER.debug(
                    "Invoice %s inserted with id=%s (total=%.2f)", invoice_number, invoice_id, total
                )
                return invoice_id

    def update_invoice(
        self,
        invoice_id: int,
        *,
        items: Optional[Sequence[Dict[str, Any]]] = None,
        tax: Optional[float] = None,
        due_date: Optional[date | str] = None,
        notes: Optional[str] = None,
        is_split_payment: Optional[bool] = None,
        installments: Optional[Sequence[Tuple[float, Optional[date | str]]]] = None,
    ) -> bool:
        """Rewrite an invoice in one transaction; ``None`` keeps the stored value.

        A non-empty ``items`` replaces every stored line. Subtotal and total
        are always re-derived from the lines that end up stored, so a tax
        change alone also refreshes the total. Returns ``False`` when the
        invoice does not exist.
        """

        with self._track_db_event(
            "update_invoice",
            table="invoices",
            invoice_id=invoice_id,
            item_count=len(items) if items else None,
        ) as event:
            with self._session() as connection:
                row = self._execute(
                    connection,
                    "SELECT tax, due_date, notes, is_split_payment FROM invoices WHERE id = ?",
                    (invoice_id,),
                    action="invoices.get",
                    table="invoices",
                ).fetchone()
                if row is None:
                    event["found"] = False
                    return False
                if items:
                    self._execute(
                        connection,
                        "DELETE FROM invoice_items WHERE invoice_id = ?",
                        (invoice_id,),
                        action="invoice_items.delete",
                        table="invoice_items",
                    )
                    self._insert_invoice_lines(connection, invoice_id, items)
                if installments is not None:
                    self._execute(
                        connection,
                        "DELETE FROM installments WHERE invoice_id = ?",
                        (invoice_id,),
                        action="installments.delete",
                        table="installments",
                    )
                    self._insert_installments(connection, invoice_id, installments)

                stored = self._execute(
                    connection,
                    "SELECT COALESCE(SUM(quantity * unit_price), 0) AS subtotal "
                    "FROM invoice_items WHERE invoice_id = ?",
                    (invoice_id,),
                    action="invoice_items.sum",
                    table="invoice_items",
                ).fetchone()
                subtotal = round(float(stored["subtotal"]), 2)
                new_tax = float(row["tax"] if tax is None else tax)
                total = round(subtotal + new_tax, 2)
                self._execute(
                    connection,
                    """
                    UPDATE invoices
                    SET due_date = ?, notes = ?, is_split_payment = ?,
                        subtotal = ?, tax = ?, total = ?
                    WHERE id = ?
                    """,
                    (
                        row["due_date"] if due_date is None else _isoformat(due_date),
                        row["notes"] if notes is None else notes,
                        row["is_split_payment"]
                        if is_split_payment is None
                        else (1 if is_split_payment else 0),
                        subtotal,
                        new_tax,
                        total,
                        invoice_id,
                    ),
                    action="invoices.update",
                    table="invoices",
                )
                event.update({"found": True, "total": total})
        LOGGER.debug("Invoice id=%s updated (total=%.2f)", invoice_id, total)
        return True

    def _load_invoice(self, connection: sqlite3.Connection, row: sqlite3.Row) -> InvoiceRecord:
        item_rows = self._execute(
            connection,
            """
            SELECT
                id,
                invoice_id,
                position,
                description,
                quantity,
                unit_price,
                total,
                student_id,
                course_id,
                duration_weeks,
                missed_weeks
            FROM invoice_items
            WHERE invoice_id = ?
            ORDER BY position, id
            """,
            (row["id"],),
            action="invoice_items.list",
            table="invoice_items",
        ).fetchall()
        installment_rows = self._execute(
            connection,
            """
            SELECT id, invoice_id, position, amount, due_date
            FROM installments
            WHERE invoice_id = ?
            ORDER BY position, id
            """,
            (row["id"],),
            action="installments.list",
            table="installments",
        ).fetchall()
        values = dict(row)
        values["is_split_payment"] = bool(values["is_split_payment"])
        values["notes"] = values["notes"] or ""
        return InvoiceRecord(
            **values,
            items=tuple(InvoiceItemRecord(**item) for item in item_rows),
            installments=tuple(InstallmentRecord(**entry) for entry in installment_rows),
        )

    def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        with self._track_db_event("get_invoice", invoice_id=invoice_id) as event:
            with self._session() as connection:
                row = self._execute(
                    connection,
                    f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE id = ?",
                    (invoice_id,),
                    action="invoices.get",
                    table="invoices",
                ).fetchone()
                event["found"] = bool(row)
                return self._load_invoice(connection, row) if row else None

    def iter_invoices(self, parent_id: Optional[int] = None) -> Iterable[InvoiceRecord]:
        where = ""
        params: Tuple[Any, ...] = ()
        if parent_id is not None:
            where = " WHERE parent_id = ?"
            params = (parent_id,)
        with self._track_db_event("iter_invoices", parent_id=parent_id) as event:
            with self._session() as connection:
                rows = self._execute(
                    connection,
                    f"SELECT {_INVOICE_COLUMNS} FROM invoices{where} ORDER BY created_at DESC, id DESC",
                    params,
                    action="invoices.iter",
                    table="invoices",
                ).fetchall()
                records = [self._load_invoice(connection, row) for row in rows]
                event["rowcount"] = len(records)
        return records

    def update_invoice_status(
        self,
        invoice_id: int,
        status: str,
        *,
        paid_date: Optional[date | str] = None,
    ) -> None:
        with self._track_db_event("update_invoice_status", invoice_id=invoice_id, status=status):
            with self._session() as connection:
                self._execute(
                    connection,
                    "UPDATE invoices SET status = ?, paid_date = ? WHERE id = ?",
                    (status, _isoformat(paid_date), invoice_id),
                    action="invoices.update_status",
                    table="invoices",
                )

    def remove_invoice(self, invoice_id: int) -> None:
        LOGGER.debug("Removing invoice id=%s", invoice_id)
        with self._track_db_event("remove_invoice", invoice_id=invoice_id):
            with self._session() as connection:
                self._execute(
                    connection,
                    "DELETE FROM invoices WHERE id = ?",
                    (invoice_id,),
                    action="invoices.delete",
                    table="invoices",
                )

    # ------------------------------------------------------------------
    # Wiki tree
    # ------------------------------------------------------------------
    def add_folder(self, name: str, parent_id: Optional[int] = None) -> int:
        LOGGER.debug("Adding wiki folder '%s' (parent_id=%s)", name, parent_id)
        with self._track_db_event("add_folder", table="wiki_folders", parent_id=parent_id) as event:
            with self._session() as connection:
                position = self._next_position(
                    connection, "wiki_folders", {"parent_id": parent_id}
                )
                if parent_id is not None:
                    position = max(
                        position,
                        self._next_position(connection, "wiki_nodes", {
                            "folder_id": parent_id,
                            "parent_node_id": None,
                        }),
                    )
                cursor = self._execute(
                    connection,
                    "INSERT INTO wiki_folders(name, parent_id, position) VALUES (?, ?, ?)",
                    (name, parent_id, position),
                    action="wiki_folders.insert",
                    table="wiki_folders",
                )
                event.update({"folder_id": int(cursor.lastrowid), "position": position})
                return int(cursor.lastrowid)

    def add_page(
        self,
        title: str,
        *,
        folder_id: Optional[int] = None,
        parent_node_id: Optional[int] = None,
    ) -> int:
        LOGGER.debug(
            "Adding wiki page '%s' (folder_id=%s, parent_node_id=%s)",
            title,
            folder_id,
            parent_node_id,
        )
        with self._track_db_event(
            "add_page",
            table="wiki_nodes",
            folder_id=folder_id,
            parent_node_id=parent_node_id,
        ) as event:
            with self._session() as connection:
                if parent_node_id is not None:
                    parent_row = self._execute(
                        connection,
                        "SELECT folder_id FROM wiki_nodes WHERE id = ?",
                        (parent_node_id,),
                        action="wiki_nodes.parent_folder",
                        table="wiki_nodes",
                    ).fetchone()
                    if parent_row is None:
                        raise ValueError(f"Parent page {parent_node_id} does not exist")
                    folder_id = parent_row["folder_id"]
                    position = self._next_position(
                        connection, "wiki_nodes", {"parent_node_id": parent_node_id}
                    )
                elif folder_id is not None:
                    # Folder contents share one sequence across folders and pages.
                    position = max(
                        self._next_position(connection, "wiki_nodes", {
                            "folder_id": folder_id,
                            "parent_node_id": None,
                        }),
                        self._next_position(connection, "wiki_folders", {"parent_id": folder_id}),
                    )
                else:
                    position = self._next_position(
                        connection,
                        "wiki_nodes",
                        {"folder_id": None, "parent_node_id": None},
                    )
                cursor = self._execute(
                    connection,
                    """
                    INSERT INTO wiki_nodes(title, folder_id, parent_node_id, position)
                    VALUES (?, ?, ?, ?)
                    """,
                    (title, folder_id, parent_node_id, position),
                    action="wiki_nodes.insert",
                    table="wiki_nodes",
                )
                event.update({"node_id": int(cursor.lastrowid), "position": position})
                return int(cursor.lastrowid)

    def get_folder(self, folder_id: int) -> Optional[WikiFolderRecord]:
        row = self._fetch_one(
            "SELECT id, name, parent_id, position FROM wiki_folders WHERE id = ?",
            (folder_id,),
            action="wiki_folders.get",
            table="wiki_folders",
        )
        return WikiFolderRecord(**row) if row else None

    def get_page(self, node_id: int) -> Optional[WikiNodeRecord]:
        row = self._fetch_one(
            "SELECT id, title, folder_id, parent_node_id, position FROM wiki_nodes WHERE id = ?",
            (node_id,),
            action="wiki_nodes.get",
            table="wiki_nodes",
        )
        return WikiNodeRecord(**row) if row else None

    def list_folders(self) -> List[WikiFolderRecord]:
        rows = self._fetch_all(
            "SELECT id, name, parent_id, position FROM wiki_folders ORDER BY position, id",
            None,
            action="wiki_folders.list",
            table="wiki_folders",
        )
        return [WikiFolderRecord(**row) for row in rows]

    def list_pages(self) -> List[WikiNodeRecord]:
        rows = self._fetch_all(
            """
            SELECT id, title, folder_id, parent_node_id, position
            FROM wiki_nodes
            ORDER BY position, id
            """,
            None,
            action="wiki_nodes.list",
            table="wiki_nodes",
        )
        return [WikiNodeRecord(**row) for row in rows]

    def remove_folder(self, folder_id: int) -> None:
        LOGGER.debug("Removing wiki folder id=%s", folder_id)
        with self._track_db_event("remove_folder", folder_id=folder_id):
            with self._session() as connection:
                self._execute(
                    connection,
                    "DELETE FROM wiki_folders WHERE id = ?",
                    (folder_id,),
                    action="wiki_folders.delete",
                    table="wiki_folders",
                )

    def remove_page(self, node_id: int) -> None:
        LOGGER.debug("Removing wiki page id=%s", node_id)
        with self._track_db_event("remove_page", node_id=node_id):
            with self._session() as connection:
                self._execute(
                    connection,
                    "DELETE FROM wiki_nodes WHERE id = ?",
                    (node_id,),
                    action="wiki_nodes.delete",
                    table="wiki_nodes",
                )

    def apply_order_updates(self, updates: Sequence[Any]) -> None:
        """Write placement updates produced by :func:`wiki.plan_move`.

        Each update exposes ``ref`` (``kind``/``id``), ``position``,
        ``folder_id`` and ``parent_node_id``. For folders ``folder_id`` is the
        parent folder. All rows are written in a single transaction.
        """

        if not updates:
            with self._track_db_event("apply_order_updates", changes=0) as event:
                event["result"] = "no_changes"
            return
        with self._track_db_event("apply_order_updates", changes=len(updates)) as event:
            with self._session() as connection:
                for update in updates:
                    if update.ref.kind == "folder":
                        self._execute(
                            connection,
                            "UPDATE wiki_folders SET parent_id = ?, position = ? WHERE id = ?",
                            (update.folder_id, update.position, update.ref.id),
                            action="wiki_folders.reorder",
                            table="wiki_folders",
                        )
                    else:
                        self._execute(
                            connection,
                            """
                            UPDATE wiki_nodes
                            SET folder_id = ?, parent_node_id = ?, position = ?
                            WHERE id = ?
                            """,
                            (update.folder_id, update.parent_node_id, update.position, update.ref.id),
                            action="wiki_nodes.reorder",
                            table="wiki_nodes",
                        )
                    LOGGER.debug(
                        "Wiki %s id=%s placed at position=%s (folder_id=%s, parent_node_id=%s)",
                        update.ref.kind,
                        update.ref.id,
                        update.position,
                        update.folder_id,
                        update.parent_node_id,
                    )
            event.update({"result": "reordered", "rowcount": len(updates)})

    def apply_wiki_move(self, plan: Any) -> None:
        LOGGER.info(
            "Moving wiki %s id=%s (%d placement updates)",
            plan.ref.kind,
            plan.ref.id,
            len(plan.updates),
        )
        self.apply_order_updates(plan.updates)


__all__ = [
    "AcademyRepository",
    "CourseRecord",
    "InstallmentRecord",
    "InvoiceItemRecord",
    "InvoiceRecord",
    "ParentRecord",
    "StudentRecord",
    "WikiFolderRecord",
    "WikiNodeRecord",
]
