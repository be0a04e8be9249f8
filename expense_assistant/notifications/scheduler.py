"""
Notification Scheduler

Polls the current user's appointments and fires each alert exactly once.

ALERT WINDOW:
    diff = appointment_time - now
    fire when  diff <= lead_window  and  diff > -overdue_window

The lead window (60 s) alerts slightly ahead of time. The overdue window
(one hour by default) lets appointments missed while the app was closed
catch up on reopen, without surfacing ones that are long past.

EXACTLY ONCE:
- Only SCHEDULED appointments with notified=False are considered
- notified=True is persisted right after the alert, inside the check
- Checks are serialized by a lock, so the flag is written before the
  next check reads it
- Ids alerted in this session are remembered, so a failed flag write
  does not cause a second alert before the next restart
"""

import asyncio
import contextlib
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from expense_assistant.audit import AuditLogger
from expense_assistant.config import NotificationSettings, get_settings
from expense_assistant.models.domain import Appointment
from expense_assistant.services.storage.interface import (
    AssistantStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


class NotificationScheduler:
    """
    Recurring appointment check for one user.

    Usage:
        scheduler = NotificationScheduler(storage, user.email, on_alert=show_banner)
        await scheduler.start()   # immediate check, then every 30 s
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        storage: AssistantStorageInterface,
        user_id: str,
        on_alert: Callable[[Appointment], None],
        alert_sound: Optional[Callable[[], Awaitable[None]]] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[NotificationSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._storage = storage
        self._user_id = user_id
        self._on_alert = on_alert
        self._alert_sound = alert_sound
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().notifications
        self._clock = clock
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._alerted_ids: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def is_due(self, appointment: Appointment, now: datetime) -> bool:
        """Whether this appointment should alert at `now`."""
        if not appointment.is_pending_alert or appointment.id in self._alerted_ids:
            return False
        diff = (appointment.date - now).total_seconds()
        return (
            diff <= self._settings.lead_window_seconds
            and diff > -self._settings.overdue_window_seconds
        )

    async def check_once(self) -> list[Appointment]:
        """
        Run one check.

        Returns:
            The appointments alerted by this check (with notified=True)
        """
        async with self._lock:
            now = self._clock()
            try:
                appointments = await self._storage.get_appointments(self._user_id)
            except StorageError as e:
                logger.error("notification_check_failed", user_id=self._user_id, error=str(e))
                await self._audit.log_notification_check_failed(self._user_id, str(e))
                return []

            fired = []
            for appointment in appointments:
                if self.is_due(appointment, now):
                    fired.append(await self._fire(appointment))
            return fired

    async def _fire(self, appointment: Appointment) -> Appointment:
        alerted = appointment.model_copy(update={"notified": True})
        self._alerted_ids.add(alerted.id)

        self._on_alert(alerted)

        if self._settings.chime_enabled and self._alert_sound is not None:
            try:
                await self._alert_sound()
            except Exception as e:
                # Sound is best effort; the banner and the flag still go through
                await self._audit.log_alert_sound_failed(alerted.id, str(e))

        try:
            await self._storage.update_appointment(alerted)
        except StorageError as e:
            logger.error(
                "notified_flag_write_failed",
                appointment_id=alerted.id,
                error=str(e),
            )
            await self._audit.log_notification_check_failed(self._user_id, str(e))

        await self._audit.log_appointment_alerted(self._user_id, alerted.id, alerted.title)
        return alerted

    async def start(self) -> None:
        """Check immediately, then keep checking in the background."""
        if self.running:
            return
        await self.check_once()
        self._task = asyncio.create_task(self._run(), name="appointment-alerts")

    async def _run(self) -> None:
        while True:
            await self._sleep(self._settings.check_interval_seconds)
            try:
                await self.check_once()
            except Exception as e:
                # A failed check does not end polling
                logger.error("notification_loop_error", error=str(e))
                await self._audit.log_error("notification_loop_error", str(e))

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
