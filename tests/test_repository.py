from __future__ import annotations

from datetime import date

import pytest

from academy_console.config import AppConfig
from academy_console.services.storage import AcademyRepository
from academy_console.services.wiki import EntryKind, EntryRef, MoveRequest, build_tree, plan_move


def test_catalog_crud_cycle(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)

    parent_id = repository.add_parent("Morgan Lee", "morgan@example.com")
    student_id = repository.add_student(
        "Sam", parent_id=parent_id, performance_discount=5, referral_count=2
    )
    course_id = repository.add_course("Robotics Basics", price=800, duration="8 weeks")
    repository.add_course("Retired Course", price=100, is_active=False)

    parent = repository.get_parent(parent_id)
    assert parent is not None and parent.email == "morgan@example.com"

    student = repository.get_student(student_id)
    assert student is not None
    assert student.referral_count == 2 and student.performance_discount == 5.0
    assert [entry.id for entry in repository.iter_students(parent_id)] == [student_id]

    repository.update_student(student_id, referral_count=4)
    assert repository.get_student(student_id).referral_count == 4

    course = repository.find_course_by_name("Robotics Basics")
    assert course is not None and course.id == course_id and course.price == 800.0
    assert [entry.name for entry in repository.iter_courses(active_only=True)] == ["Robotics Basics"]
    assert len(list(repository.iter_courses())) == 2


def test_negative_referrals_are_rejected(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)

    with pytest.raises(ValueError):
        repository.add_student("Sam", referral_count=-1)


def test_invoice_roundtrip_with_installments(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)
    parent_id = repository.add_parent("Morgan Lee")

    invoice_id = repository.create_invoice(
        invoice_number="INV-0001",
        parent_id=parent_id,
        items=[
            {"description": "Robotics Basics", "quantity": 1, "unitPrice": 600.0, "missedWeeks": 2},
            {"description": "Kit", "quantity": 2, "unitPrice": 25.0},
        ],
        tax=15.0,
        due_date=date(2026, 11, 1),
        is_split_payment=True,
        installments=[(332.5, date(2026, 11, 1)), (332.5, "2026-12-01")],
        notes="Thanks",
    )

    invoice = repository.get_invoice(invoice_id)
    assert invoice is not None
    assert invoice.subtotal == 650.0 and invoice.total == 665.0
    assert invoice.is_split_payment is True
    assert [item.total for item in invoice.items] == [600.0, 50.0]
    assert invoice.items[0].missed_weeks == 2
    assert [entry.due_date for entry in invoice.installments] == ["2026-11-01", "2026-12-01"]
    assert repository.latest_invoice_number() == "INV-0001"

    repository.update_invoice_status(invoice_id, "paid", paid_date=date(2026, 10, 20))
    updated = repository.get_invoice(invoice_id)
    assert updated.status == "paid" and updated.paid_date == "2026-10-20"

    repository.remove_invoice(invoice_id)
    assert repository.get_invoice(invoice_id) is None
    assert repository.iter_invoices() == []


def test_update_invoice_replaces_lines_and_rederives_totals(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)
    parent_id = repository.add_parent("Morgan Lee")
    invoice_id = repository.create_invoice(
        invoice_number="INV-0001",
        parent_id=parent_id,
        items=[
            {"description": "Robotics Basics", "quantity": 1, "unitPrice": 600.0},
            {"description": "Kit", "quantity": 2, "unitPrice": 25.0},
        ],
        tax=15.0,
        due_date=date(2026, 11, 1),
        is_split_payment=True,
        installments=[(332.5, date(2026, 11, 1)), (332.5, date(2026, 12, 1))],
        notes="Thanks",
    )

    assert repository.update_invoice(
        invoice_id,
        items=[
            {
                "description": "Robotics Basics (Prorated: 3/8 weeks missed)",
                "quantity": 1,
                "unitPrice": 500.0,
                "courseId": None,
                "missedWeeks": 3,
            }
        ],
        tax=20.0,
        notes="Revised",
        is_split_payment=False,
        installments=[],
    )

    invoice = repository.get_invoice(invoice_id)
    assert invoice.invoice_number == "INV-0001"
    assert invoice.subtotal == 500.0 and invoice.total == 520.0
    assert [item.missed_weeks for item in invoice.items] == [3]
    assert invoice.installments == ()
    assert invoice.is_split_payment is False
    assert invoice.notes == "Revised" and invoice.due_date == "2026-11-01"

    assert repository.update_invoice(invoice_id, tax=0.0)
    retaxed = repository.get_invoice(invoice_id)
    assert retaxed.total == 500.0 and len(retaxed.items) == 1

    assert repository.update_invoice(999, tax=1.0) is False


def test_wiki_positions_follow_sibling_groups(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)

    folder_a = repository.add_folder("FolderA")
    folder_b = repository.add_folder("FolderB")
    page_x = repository.add_page("PageX")
    inner = repository.add_page("Inner", folder_id=folder_a)
    nested = repository.add_folder("Nested", folder_a)
    child = repository.add_page("Child", parent_node_id=inner)

    assert repository.get_folder(folder_b).position == 1
    assert repository.get_page(page_x).position == 0
    assert repository.get_folder(nested).position == 1
    child_record = repository.get_page(child)
    assert child_record.folder_id == folder_a and child_record.position == 0

    with pytest.raises(ValueError):
        repository.add_page("Dangling", parent_node_id=999)


def test_apply_wiki_move_persists_plan(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)
    repository.add_folder("FolderA")
    repository.add_folder("FolderB")
    page_x = repository.add_page("PageX")
    page_y = repository.add_page("PageY")

    plan = plan_move(
        repository.list_folders(),
        repository.list_pages(),
        MoveRequest(ref=EntryRef(EntryKind.NODE, page_y), index=0),
    )
    repository.apply_wiki_move(plan)

    assert repository.get_page(page_y).position == 0
    assert repository.get_page(page_x).position == 1
    tree = build_tree(repository.list_folders(), repository.list_pages())
    assert [entry.label for entry in tree] == ["FolderA", "FolderB", "PageY", "PageX"]


def test_removing_folder_cascades_to_contents(temp_config: AppConfig) -> None:
    repository = AcademyRepository(temp_config)
    folder_id = repository.add_folder("Docs")
    page_id = repository.add_page("Intro", folder_id=folder_id)

    repository.remove_folder(folder_id)

    assert repository.get_folder(folder_id) is None
    assert repository.get_page(page_id) is None


def test_repository_emits_db_events(temp_config: AppConfig) -> None:
    events = []

    def _capture(event_type, message, **kwargs):
        events.append((event_type, message, kwargs))

    repository = AcademyRepository(temp_config, event_emitter=_capture)
    repository.add_parent("Morgan Lee")

    assert any(message == "add_parent" for _type, message, _kwargs in events)
    insert = next(kwargs for _type, message, kwargs in events if message == "parents.insert")
    assert insert["payload"]["status"] == "ok"
    assert insert["payload"]["table"] == "parents"
    assert insert["duration_ms"] >= 0
