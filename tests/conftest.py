from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from academy_console.bootstrap import Bootstrapper
from academy_console.config import AppConfig
from academy_console.services.pricing import PricingContext
from academy_console.services.storage import CourseRecord, StudentRecord


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    config_file = config_dir / "default.json"
    config_file.write_text(
        """
        {
            \"storage_root\": \"storage\",
            \"database_file\": \"storage/academy.db\"
        }
        """,
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/academy.db",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config


@pytest.fixture()
def pricing_context() -> PricingContext:
    courses = [
        CourseRecord(id=1, name="Robotics Basics", price=800.0, duration="8 weeks"),
        CourseRecord(id=2, name="Python Camp", price=450.0, duration="12-Week camp"),
        CourseRecord(id=3, name="Private Lesson", price=60.0, duration="1 hour"),
    ]
    students = [
        StudentRecord(id=10, parent_id=1, name="Ada", performance_discount=0.0, referral_count=0),
        StudentRecord(id=11, parent_id=1, name="Linus", performance_discount=10.0, referral_count=1),
        StudentRecord(id=12, parent_id=2, name="Grace", performance_discount=0.0, referral_count=3),
        StudentRecord(id=13, parent_id=2, name="Alan", performance_discount=90.0, referral_count=10),
    ]
    return PricingContext.from_records(courses, students)
