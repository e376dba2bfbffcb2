"""Configuration loading utilities for the Academy Console toolkit."""

from __future__ import annotations

import contextlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".academy_console_write_check"


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. The returned flag tells whether a
    fallback was used. When nothing can be prepared ``preferred`` is returned
    unchanged so that the bootstrapper can report the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


@dataclass(frozen=True)
class PricingSettings:
    """Business constants used by the invoice pricing engine."""

    referral_step_percent: float = 5.0
    referral_cap_percent: float = 20.0
    total_tolerance: float = 0.01
    invoice_prefix: str = "INV-"
    invoice_number_width: int = 4

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any] | None) -> "PricingSettings":
        if not mapping:
            return cls()
        defaults = cls()
        return cls(
            referral_step_percent=float(
                mapping.get("referral_step_percent", defaults.referral_step_percent)
            ),
            referral_cap_percent=float(
                mapping.get("referral_cap_percent", defaults.referral_cap_percent)
            ),
            total_tolerance=float(mapping.get("total_tolerance", defaults.total_tolerance)),
            invoice_prefix=str(mapping.get("invoice_prefix", defaults.invoice_prefix)),
            invoice_number_width=int(
                mapping.get("invoice_number_width", defaults.invoice_number_width)
            ),
        )


DEFAULT_PRICING = PricingSettings()


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and business settings for the toolkit."""

    storage_root: Path
    database_file: Path
    pricing: PricingSettings = field(default_factory=PricingSettings)

    @property
    def settings_file(self) -> Path:
        return (self.storage_root / "invoice_settings.json").resolve()

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_root, relocated = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(Path.home() / ".academy_console" / "storage",),
        )
        database_file = _resolve_database_file(
            (base_path / mapping["database_file"]).resolve(),
            preferred_storage=preferred_storage,
            storage_root=storage_root,
            relocated=relocated,
        )
        return cls(
            storage_root=storage_root,
            database_file=database_file,
            pricing=PricingSettings.from_mapping(mapping.get("pricing")),
        )


def _resolve_database_file(
    preferred: Path, *, preferred_storage: Path, storage_root: Path, relocated: bool
) -> Path:
    """Pick the database location, following the storage root when it moved.

    Candidates are tried in order: the same relative path under a relocated
    storage root, the configured path, then the storage root itself.
    """

    candidates: List[Path] = []
    if relocated:
        with contextlib.suppress(ValueError):
            candidates.append(storage_root / preferred.relative_to(preferred_storage))
    candidates.extend([preferred, storage_root / preferred.name])

    for candidate in candidates:
        candidate = candidate.resolve()
        if _ensure_writable_directory(candidate.parent):
            if candidate != preferred:
                LOGGER.warning(
                    "Preferred database location '%s' is not writable; using fallback '%s'.",
                    preferred,
                    candidate,
                )
            return candidate

    LOGGER.warning("Database location '%s' is not writable and no fallback is available.", preferred)
    return preferred


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "DEFAULT_PRICING", "PricingSettings", "load_config"]
