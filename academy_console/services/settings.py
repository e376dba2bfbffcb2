"""Persistence helpers for invoice defaults."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)


@dataclass
class InvoiceSettings:
    """Values pre-filled into every new invoice draft."""

    default_notes: str = ""
    default_tax: float = 0.0


class SettingsStore:
    """Load and store :class:`InvoiceSettings` next to the database."""

    def __init__(self, config: AppConfig) -> None:
        self._path = config.settings_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> InvoiceSettings:
        if not self._path.exists():
            return InvoiceSettings()

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring unreadable settings file %s", self._path)
            return InvoiceSettings()
        if not isinstance(payload, dict):
            return InvoiceSettings()

        settings = InvoiceSettings()
        known = {item.name for item in fields(InvoiceSettings)}
        for name, value in payload.items():
            if name not in known:
                continue
            if name == "default_tax":
                try:
                    value = float(value)
                except (TypeError, ValueError):
                    LOGGER.warning("Ignoring invalid default_tax %r", value)
                    continue
            setattr(settings, name, value)
        return settings

    def save(self, settings: InvoiceSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")


__all__ = ["InvoiceSettings", "SettingsStore"]
