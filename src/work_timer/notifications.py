"""Desktop notifications for state changes, goals and break reminders."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from plyer import notification as plyer_notification

from .config import TrackerSettings
from .models import WorkState

logger = logging.getLogger(__name__)

APP_NAME = "Work Timer"

Sender = Callable[[str, str], None]

STATE_LABELS = {
    WorkState.WORKING: "Working",
    WorkState.HARD_WORKING: "Working hard",
    WorkState.RESTING: "Resting",
    WorkState.EATING: "Eating",
    WorkState.SLEEPING: "Sleeping",
}


def plyer_sender(title: str, message: str) -> None:
    plyer_notification.notify(title=title, message=message, app_name=APP_NAME, timeout=5)


class NotificationDispatcher:
    """Observes the state machine and surfaces OS notifications.

    Purely observational: a failing sender is logged and ignored.
    """

    def __init__(
        self,
        settings: Callable[[], TrackerSettings],
        sender: Optional[Sender] = None,
    ) -> None:
        self._settings = settings
        self._sender = sender or plyer_sender
        self._unsubscribers: list[Callable[[], bool]] = []

    def attach(self, machine) -> None:
        self._unsubscribers.extend(
            [
                machine.state_transition.connect(self.on_state_transition),
                machine.goal_achieved.connect(self.on_goal_achieved),
                machine.break_due.connect(self.on_break_due),
            ]
        )

    def detach(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def on_state_transition(self, from_state: WorkState, to_state: WorkState) -> None:
        if not self._settings().notifications.state_change:
            return
        self._send(
            "State changed",
            f"{STATE_LABELS.get(from_state, from_state)} → {STATE_LABELS.get(to_state, to_state)}",
        )

    def on_goal_achieved(self, project_name: str, goal_hours: float) -> None:
        if not self._settings().notifications.goal_achieved:
            return
        self._send(
            "Goal achieved!",
            f"You reached the daily goal of {goal_hours:g} hours for {project_name}.",
        )

    def on_break_due(self, work_duration_seconds: float) -> None:
        if not self._settings().notifications.state_change:
            return
        hours, remainder = divmod(int(work_duration_seconds), 3600)
        minutes = remainder // 60
        elapsed = f"{hours}h {minutes}m" if hours else f"{minutes}m"
        self._send("Time for a break", f"You have been working for {elapsed}. Take a short rest!")

    def _send(self, title: str, message: str) -> None:
        try:
            self._sender(title, message)
        except Exception:
            logger.warning("Notification failed: %s", title, exc_info=True)
