"""Configuration models and helpers for the work timer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .events import Signal

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


@dataclass(slots=True)
class NotificationToggles:
    state_change: bool = True
    goal_achieved: bool = True
    long_distraction: bool = True


@dataclass(slots=True)
class TrackerSettings:
    """User-editable settings plus the runtime polling cadences."""

    sleeping_threshold_seconds: int = 30 * 60
    hardworking_threshold_seconds: int = 20 * 60
    resting_threshold_seconds: Optional[int] = None
    auto_start: bool = False
    theme_color: str = "#3B82F6"
    notifications: NotificationToggles = field(default_factory=NotificationToggles)

    foreground_interval: timedelta = timedelta(milliseconds=500)
    idle_interval: timedelta = timedelta(seconds=10)
    escalation_interval: timedelta = timedelta(seconds=60)
    tick_interval: timedelta = timedelta(seconds=1)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "TrackerSettings":
        """Build settings from a persisted document, defaulting anything missing."""
        settings = cls()
        if not isinstance(raw, Mapping):
            return settings

        for name in ("sleeping_threshold_seconds", "hardworking_threshold_seconds"):
            value = raw.get(name)
            if _is_positive_number(value):
                setattr(settings, name, int(value))

        resting = raw.get("resting_threshold_seconds")
        if _is_positive_number(resting):
            settings.resting_threshold_seconds = int(resting)

        if isinstance(raw.get("auto_start"), bool):
            settings.auto_start = raw["auto_start"]
        if isinstance(raw.get("theme_color"), str) and raw["theme_color"].strip():
            settings.theme_color = raw["theme_color"].strip()

        toggles = raw.get("notifications")
        if isinstance(toggles, Mapping):
            for toggle in fields(NotificationToggles):
                if isinstance(toggles.get(toggle.name), bool):
                    setattr(settings.notifications, toggle.name, toggles[toggle.name])

        return settings

    def to_mapping(self) -> dict[str, Any]:
        return {
            "sleeping_threshold_seconds": self.sleeping_threshold_seconds,
            "hardworking_threshold_seconds": self.hardworking_threshold_seconds,
            "resting_threshold_seconds": self.resting_threshold_seconds,
            "auto_start": self.auto_start,
            "theme_color": self.theme_color,
            "notifications": {
                toggle.name: getattr(self.notifications, toggle.name)
                for toggle in fields(NotificationToggles)
            },
        }

    def merged(self, updates: Mapping[str, Any]) -> "TrackerSettings":
        """Return a copy with a partial update applied.

        Nested notification toggles are merged key by key. Non-positive
        thresholds are rejected with ``ValueError``.
        """
        for name in ("sleeping_threshold_seconds", "hardworking_threshold_seconds"):
            if name in updates and not _is_positive_number(updates[name]):
                raise ValueError(f"{name} must be a positive number")
        resting = updates.get("resting_threshold_seconds")
        if resting is not None and not _is_positive_number(resting):
            raise ValueError("resting_threshold_seconds must be a positive number or null")

        current = self.to_mapping()
        toggles = dict(current["notifications"])
        if isinstance(updates.get("notifications"), Mapping):
            toggles.update(updates["notifications"])
        current.update({k: v for k, v in updates.items() if k != "notifications"})
        current["notifications"] = toggles

        result = TrackerSettings.from_mapping(current)
        if "resting_threshold_seconds" in updates and resting is None:
            result.resting_threshold_seconds = None
        return replace(
            result,
            foreground_interval=self.foreground_interval,
            idle_interval=self.idle_interval,
            escalation_interval=self.escalation_interval,
            tick_interval=self.tick_interval,
        )


def _is_positive_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class SettingsStore:
    """Reads and writes the singleton settings document."""

    def __init__(self, store: "Store", *, defaults: Optional[TrackerSettings] = None) -> None:
        self._store = store
        self._defaults = defaults or TrackerSettings()
        self.changed: Signal = Signal("settings-changed")

    def load(self) -> TrackerSettings:
        document = self._defaults.to_mapping()
        raw = self._store.get(SETTINGS_KEY)
        if isinstance(raw, Mapping):
            document.update(raw)
        settings = TrackerSettings.from_mapping(document)
        return replace(
            settings,
            foreground_interval=self._defaults.foreground_interval,
            idle_interval=self._defaults.idle_interval,
            escalation_interval=self._defaults.escalation_interval,
            tick_interval=self._defaults.tick_interval,
        )

    def update(self, updates: Mapping[str, Any]) -> TrackerSettings:
        settings = self.load().merged(updates)
        self._store.set(SETTINGS_KEY, settings.to_mapping())
        logger.info("Settings updated: %s", settings.to_mapping())
        self.changed.emit(settings)
        return settings
