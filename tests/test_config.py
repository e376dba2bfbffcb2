import json
from pathlib import Path

import academy_console.config as config_module
from academy_console.config import AppConfig, PricingSettings, load_config


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/academy.db",
        },
        base_path=tmp_path,
    )

    expected_storage = (home_dir / ".academy_console" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == (expected_storage / "academy.db").resolve()
    assert expected_storage.exists()


def test_settings_file_lives_in_storage_root(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {"storage_root": "storage", "database_file": "storage/academy.db"},
        base_path=tmp_path,
    )

    assert config.settings_file == (tmp_path / "storage" / "invoice_settings.json").resolve()


def test_pricing_block_defaults_and_overrides(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/academy.db",
            "pricing": {"referral_cap_percent": 25, "invoice_prefix": "ACA-"},
        },
        base_path=tmp_path,
    )

    assert config.pricing.referral_cap_percent == 25.0
    assert config.pricing.invoice_prefix == "ACA-"
    assert config.pricing.referral_step_percent == 5.0
    assert config.pricing.total_tolerance == 0.01
    assert PricingSettings.from_mapping(None) == PricingSettings()


def test_load_config_reads_explicit_path(tmp_path: Path) -> None:
    config_file = tmp_path / "custom.json"
    config_file.write_text(
        json.dumps(
            {
                "storage_root": str(tmp_path / "data"),
                "database_file": str(tmp_path / "data" / "db.sqlite"),
                "pricing": {"invoice_number_width": 6},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(config_file)

    assert config.storage_root == (tmp_path / "data").resolve()
    assert config.database_file == (tmp_path / "data" / "db.sqlite").resolve()
    assert config.pricing.invoice_number_width == 6
