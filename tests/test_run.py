"""Tests for the run.py command-line entrypoint."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import run
from academy_console.bootstrap import BootstrapError
from academy_console.config import AppConfig
from academy_console.services.storage import AcademyRepository


@pytest.fixture()
def runner(temp_config: AppConfig, monkeypatch) -> CliRunner:
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(run, "_prepare_logging", lambda storage_root, **kwargs: None)
    return CliRunner()


def _seed_catalog(runner: CliRunner) -> None:
    assert runner.invoke(run.cli, ["add-parent", "Morgan Lee"]).exit_code == 0
    assert (
        runner.invoke(
            run.cli, ["add-course", "Robotics Basics", "--price", "800", "--duration", "8 weeks"]
        ).exit_code
        == 0
    )
    assert (
        runner.invoke(
            run.cli, ["add-student", "Sam", "--parent-id", "1", "--referrals", "3"]
        ).exit_code
        == 0
    )


def _write_draft(tmp_path: Path, payload: dict) -> Path:
    path = tmp_path / "draft.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_catalog_commands_report_ids(runner: CliRunner) -> None:
    result = runner.invoke(run.cli, ["add-parent", "Morgan Lee", "--email", "m@example.com"])

    assert result.exit_code == 0
    assert "Parent 'Morgan Lee' added with id 1" in result.output


def test_add_student_rejects_unknown_parent(runner: CliRunner) -> None:
    result = runner.invoke(run.cli, ["add-student", "Sam", "--parent-id", "99"])

    assert result.exit_code == 2
    assert "Parent 99 does not exist" in result.output


def test_add_course_rejects_duplicate_names(runner: CliRunner) -> None:
    runner.invoke(run.cli, ["add-course", "Robotics Basics", "--price", "800"])

    result = runner.invoke(run.cli, ["add-course", "Robotics Basics"])

    assert result.exit_code == 2


def test_quote_json_prints_priced_payload(runner: CliRunner, tmp_path: Path) -> None:
    _seed_catalog(runner)
    draft = _write_draft(
        tmp_path,
        {
            "parentId": 1,
            "dueDate": "2026-11-01",
            "items": [{"courseId": 1, "studentId": 1, "missedWeeks": 2}],
        },
    )

    result = runner.invoke(run.cli, ["quote", str(draft), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    item = payload["items"][0]
    assert item["unitPrice"] == 510.0
    assert item["description"] == (
        "Robotics Basics (15% Off (15% Ref + 0% Perf)) (Prorated: 2/8 weeks missed)"
    )


def test_quote_save_stores_numbered_invoice(
    runner: CliRunner, tmp_path: Path, temp_config: AppConfig
) -> None:
    _seed_catalog(runner)
    draft = _write_draft(
        tmp_path,
        {
            "parentId": 1,
            "isSplitPayment": True,
            "autoDistribute": True,
            "installments": [{"dueDate": "2026-11-01"}, {"dueDate": "2026-12-01"}],
            "items": [{"courseId": 1}],
        },
    )

    first = runner.invoke(run.cli, ["quote", str(draft), "--save"])
    second = runner.invoke(run.cli, ["quote", str(draft), "--save"])

    assert first.exit_code == 0, first.output
    assert "Invoice INV-0001 saved" in first.output
    assert "Invoice INV-0002 saved" in second.output

    invoices = AcademyRepository(temp_config).iter_invoices()
    assert {invoice.invoice_number for invoice in invoices} == {"INV-0001", "INV-0002"}
    stored = invoices[0]
    assert stored.total == 800.0
    assert [entry.amount for entry in stored.installments] == [400.0, 400.0]
    assert stored.due_date == "2026-11-01"

    listing = runner.invoke(run.cli, ["invoices"])
    assert listing.exit_code == 0
    assert "INV-0002" in listing.output


def test_quote_save_refuses_invalid_draft(runner: CliRunner, tmp_path: Path) -> None:
    _seed_catalog(runner)
    draft = _write_draft(tmp_path, {"items": [{"courseId": 1}]})

    result = runner.invoke(run.cli, ["quote", str(draft), "--save"])

    assert result.exit_code == 1
    assert "Please select a parent" in result.output


def test_quote_rejects_unknown_course(runner: CliRunner, tmp_path: Path) -> None:
    draft = _write_draft(tmp_path, {"parentId": 1, "items": [{"courseId": 5}]})

    result = runner.invoke(run.cli, ["quote", str(draft)])

    assert result.exit_code == 2
    assert "Unknown course 5" in result.output


def test_quote_reports_missed_weeks_beyond_duration(
    runner: CliRunner, tmp_path: Path, temp_config: AppConfig
) -> None:
    _seed_catalog(runner)
    draft = _write_draft(
        tmp_path,
        {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1, "missedWeeks": 10}]},
    )

    quoted = runner.invoke(run.cli, ["quote", str(draft), "--json"])
    saved = runner.invoke(run.cli, ["quote", str(draft), "--save"])

    assert quoted.exit_code == 0, quoted.output
    assert json.loads(quoted.stdout) == {"issues": ["Item 1 misses 10 of 8 weeks"]}
    assert saved.exit_code == 1
    assert isinstance(saved.exception, SystemExit)
    assert AcademyRepository(temp_config).iter_invoices() == []


def test_quote_reports_students_of_another_parent(runner: CliRunner, tmp_path: Path) -> None:
    _seed_catalog(runner)
    runner.invoke(run.cli, ["add-parent", "Jordan Park"])
    runner.invoke(run.cli, ["add-student", "Riley", "--parent-id", "2", "--performance", "50"])
    draft = _write_draft(
        tmp_path,
        {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1, "studentId": 2}]},
    )

    result = runner.invoke(run.cli, ["quote", str(draft), "--json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout) == {
        "issues": ["Item 1 student does not belong to the selected parent"]
    }


def test_quote_only_offers_active_courses(runner: CliRunner, tmp_path: Path) -> None:
    _seed_catalog(runner)
    runner.invoke(run.cli, ["add-course", "Retired Course", "--price", "100", "--inactive"])
    draft = _write_draft(
        tmp_path, {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 2}]}
    )

    result = runner.invoke(run.cli, ["quote", str(draft)])

    assert result.exit_code == 2
    assert "Unknown course 2" in result.output


def test_invoice_edit_requotes_stored_invoice(
    runner: CliRunner, tmp_path: Path, temp_config: AppConfig
) -> None:
    _seed_catalog(runner)
    original = _write_draft(
        tmp_path, {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1}]}
    )
    assert runner.invoke(run.cli, ["quote", str(original), "--save"]).exit_code == 0
    edit = tmp_path / "edit.json"
    edit.write_text(
        json.dumps(
            {
                "tax": 5,
                "items": [
                    {"line": 1, "missedWeeks": 2},
                    {"description": "Kit", "unitPrice": 25},
                ],
            }
        ),
        encoding="utf-8",
    )

    preview = runner.invoke(run.cli, ["invoice-edit", "1", str(edit), "--json"])
    result = runner.invoke(run.cli, ["invoice-edit", "1", str(edit), "--save"])

    assert preview.exit_code == 0, preview.output
    assert [item["unitPrice"] for item in json.loads(preview.stdout)["items"]] == [600.0, 25.0]
    assert result.exit_code == 0, result.output
    assert "Invoice INV-0001 updated" in result.output
    invoice = AcademyRepository(temp_config).get_invoice(1)
    assert invoice.invoice_number == "INV-0001"
    assert invoice.subtotal == 625.0 and invoice.total == 630.0
    assert [item.description for item in invoice.items] == [
        "Robotics Basics (Prorated: 2/8 weeks missed)",
        "Kit",
    ]
    assert invoice.due_date == "2026-11-01"


def test_invoice_edit_rejects_unknown_invoice_and_parent_change(
    runner: CliRunner, tmp_path: Path
) -> None:
    _seed_catalog(runner)
    original = _write_draft(
        tmp_path, {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1}]}
    )
    runner.invoke(run.cli, ["quote", str(original), "--save"])
    moved = tmp_path / "moved.json"
    moved.write_text(json.dumps({"parentId": 2}), encoding="utf-8")

    missing = runner.invoke(run.cli, ["invoice-edit", "42", str(moved)])
    reparented = runner.invoke(run.cli, ["invoice-edit", "1", str(moved)])

    assert missing.exit_code == 2
    assert reparented.exit_code == 2


def test_quote_rejects_malformed_json(runner: CliRunner, tmp_path: Path) -> None:
    path = tmp_path / "draft.json"
    path.write_text("{oops", encoding="utf-8")

    result = runner.invoke(run.cli, ["quote", str(path)])

    assert result.exit_code == 2


def test_settings_defaults_feed_quotes(runner: CliRunner, tmp_path: Path) -> None:
    _seed_catalog(runner)
    result = runner.invoke(run.cli, ["settings", "--notes", "Pay soon", "--tax", "20"])
    assert result.exit_code == 0
    assert "Default tax: 20.00" in result.output

    draft = _write_draft(
        tmp_path, {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1}]}
    )
    quoted = runner.invoke(run.cli, ["quote", str(draft), "--json"])

    payload = json.loads(quoted.stdout)
    assert payload["tax"] == 20.0
    assert payload["notes"] == "Pay soon"


def test_invoice_status_marks_paid(
    runner: CliRunner, tmp_path: Path, temp_config: AppConfig
) -> None:
    _seed_catalog(runner)
    draft = _write_draft(
        tmp_path, {"parentId": 1, "dueDate": "2026-11-01", "items": [{"courseId": 1}]}
    )
    runner.invoke(run.cli, ["quote", str(draft), "--save"])

    result = runner.invoke(run.cli, ["invoice-status", "1", "paid", "--paid-date", "2026-10-18"])

    assert result.exit_code == 0, result.output
    invoice = AcademyRepository(temp_config).get_invoice(1)
    assert invoice.status == "paid" and invoice.paid_date == "2026-10-18"

    missing = runner.invoke(run.cli, ["invoice-status", "42", "paid"])
    assert missing.exit_code == 2


def test_wiki_move_reorders_root_pages(runner: CliRunner, temp_config: AppConfig) -> None:
    runner.invoke(run.cli, ["wiki-add-folder", "Docs"])
    runner.invoke(run.cli, ["wiki-add-page", "Intro"])
    runner.invoke(run.cli, ["wiki-add-page", "FAQ"])

    result = runner.invoke(run.cli, ["wiki-move", "node-2", "--index", "0"])

    assert result.exit_code == 0, result.output
    assert "Moved node-2 to position 0" in result.output
    repository = AcademyRepository(temp_config)
    assert repository.get_page(2).position == 0
    assert repository.get_page(1).position == 1


def test_wiki_move_combine_into_folder(runner: CliRunner, temp_config: AppConfig) -> None:
    runner.invoke(run.cli, ["wiki-add-folder", "Docs"])
    runner.invoke(run.cli, ["wiki-add-page", "Intro"])

    result = runner.invoke(run.cli, ["wiki-move", "file-1", "--combine", "folder-1"])

    assert result.exit_code == 0, result.output
    page = AcademyRepository(temp_config).get_page(1)
    assert page.folder_id == 1 and page.position == 0


def test_wiki_move_noop_and_invalid(runner: CliRunner) -> None:
    runner.invoke(run.cli, ["wiki-add-folder", "Docs"])

    noop = runner.invoke(run.cli, ["wiki-move", "folder-1", "--index", "0"])
    assert noop.exit_code == 0
    assert "Nothing to move." in noop.output

    invalid = runner.invoke(run.cli, ["wiki-move", "folder-1", "--to", "folder-1"])
    assert invalid.exit_code == 2
    assert "Cannot move folder into itself" in invalid.output


def test_default_command_renders_overview(runner: CliRunner) -> None:
    result = runner.invoke(run.cli, [])

    assert result.exit_code == 0
    assert "Academy Overview" in result.output


def test_init_reports_bootstrap_failures(monkeypatch) -> None:
    def _fail():
        raise BootstrapError("The storage directory '/nope' is not writable")

    monkeypatch.setattr(run, "initialize_app", _fail)

    result = CliRunner().invoke(run.cli, ["init"])

    assert result.exit_code == 1
    assert "not writable" in result.output


def test_debug_flag_reaches_logging_setup(
    temp_config: AppConfig, monkeypatch
) -> None:
    calls = []
    monkeypatch.setattr(run, "initialize_app", lambda: temp_config)
    monkeypatch.setattr(
        run, "_prepare_logging", lambda storage_root, **kwargs: calls.append(kwargs)
    )

    result = CliRunner().invoke(run.cli, ["--debug", "add-parent", "Morgan Lee"])

    assert result.exit_code == 0, result.output
    assert calls == [{"debug": True}]
