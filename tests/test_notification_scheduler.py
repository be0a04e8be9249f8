"""
Tests for the NotificationScheduler.

The clock is fixed; appointments are placed relative to it.
"""

import asyncio
from datetime import timedelta

import pytest

from expense_assistant.config import NotificationSettings
from expense_assistant.models.audit import AuditEventType
from expense_assistant.models.domain import (
    AppointmentDraft,
    AppointmentStatus,
    AppointmentType,
)
from expense_assistant.notifications import NotificationScheduler
from expense_assistant.services.storage import InMemoryStorage, StorageError

from conftest import FIXED_NOW, settle


async def _add(storage, user, offset: timedelta, title: str = "Tbib", **updates):
    appointment = await storage.add_appointment(AppointmentDraft(
        user_id=user.email,
        title=title,
        date=FIXED_NOW + offset,
        type=AppointmentType.MEETING,
    ))
    if updates:
        appointment = await storage.update_appointment(appointment.model_copy(update=updates))
    return appointment


@pytest.fixture
def alerts() -> list:
    return []


@pytest.fixture
def chimes() -> list:
    return []


@pytest.fixture
def scheduler(storage, user, alerts, chimes, audit_logger, notification_settings):
    async def chime() -> None:
        chimes.append(True)

    return NotificationScheduler(
        storage,
        user.email,
        on_alert=alerts.append,
        alert_sound=chime,
        audit_logger=audit_logger,
        settings=notification_settings,
        clock=lambda: FIXED_NOW,
    )


class TestAlertWindow:
    """Tests for which appointments are due."""

    async def test_fires_within_lead_window(self, scheduler, storage, user, alerts, chimes):
        """Test an appointment 30 s away alerts, chimes and is flagged."""
        appointment = await _add(storage, user, timedelta(seconds=30))

        fired = await scheduler.check_once()

        assert [a.id for a in fired] == [appointment.id]
        assert [a.id for a in alerts] == [appointment.id]
        assert chimes == [True]
        stored = (await storage.get_appointments(user.email))[0]
        assert stored.notified is True
        assert stored.status == AppointmentStatus.SCHEDULED

    async def test_lead_window_edge(self, scheduler, storage, user):
        """Test exactly 60 s ahead is due, 61 s is not."""
        on_edge = await _add(storage, user, timedelta(seconds=60), title="edge")
        await _add(storage, user, timedelta(seconds=61), title="later")

        fired = await scheduler.check_once()

        assert [a.id for a in fired] == [on_edge.id]

    async def test_overdue_within_hour_fires(self, scheduler, storage, user):
        """Test an appointment missed 45 minutes ago still alerts."""
        await _add(storage, user, -timedelta(minutes=45))
        assert len(await scheduler.check_once()) == 1

    async def test_overdue_edge_is_excluded(self, scheduler, storage, user):
        """Test exactly one hour overdue is outside the window."""
        await _add(storage, user, -timedelta(hours=1))
        await _add(storage, user, -timedelta(hours=2))
        assert await scheduler.check_once() == []

    async def test_overdue_window_is_configurable(self, storage, user, alerts, audit_logger):
        """Test a wider overdue window catches older appointments."""
        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            audit_logger=audit_logger,
            settings=NotificationSettings(overdue_window_seconds=3 * 3600),
            clock=lambda: FIXED_NOW,
        )
        await _add(storage, user, -timedelta(hours=2))

        assert len(await scheduler.check_once()) == 1

    @pytest.mark.parametrize("status", [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED])
    async def test_closed_appointments_never_fire(self, scheduler, storage, user, status):
        """Test completed and cancelled appointments are skipped."""
        await _add(storage, user, timedelta(seconds=10), status=status)
        assert await scheduler.check_once() == []

    async def test_already_notified_never_fires(self, scheduler, storage, user):
        """Test an appointment with notified=True is skipped."""
        await _add(storage, user, timedelta(seconds=10), notified=True)
        assert await scheduler.check_once() == []

    async def test_other_users_ignored(self, scheduler, storage, user):
        """Test only the signed-in user's appointments are checked."""
        await storage.add_appointment(AppointmentDraft(
            user_id="omar@example.com",
            title="Other",
            date=FIXED_NOW,
            type=AppointmentType.CALL,
        ))
        assert await scheduler.check_once() == []


class TestExactlyOnce:
    """Tests for the exactly-once guarantee."""

    async def test_second_check_does_not_refire(self, scheduler, storage, user, alerts):
        """Test a fired appointment stays quiet on later checks."""
        await _add(storage, user, timedelta(seconds=30))

        await scheduler.check_once()
        await scheduler.check_once()

        assert len(alerts) == 1

    async def test_concurrent_checks_fire_once(self, scheduler, storage, user, alerts):
        """Test overlapping checks still alert once."""
        await _add(storage, user, timedelta(seconds=30))

        await asyncio.gather(scheduler.check_once(), scheduler.check_once())

        assert len(alerts) == 1

    async def test_failed_flag_write_does_not_refire(self, user, alerts, audit_logger, audit_storage, notification_settings):
        """Test a failed notified write is audited and not retried as a new alert."""

        class ReadOnlyAppointments(InMemoryStorage):
            async def update_appointment(self, appointment):
                raise StorageError("quota exceeded")

        storage = ReadOnlyAppointments()
        await storage.add_appointment(AppointmentDraft(
            user_id=user.email,
            title="Tbib",
            date=FIXED_NOW,
            type=AppointmentType.MEETING,
        ))
        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            audit_logger=audit_logger,
            settings=notification_settings,
            clock=lambda: FIXED_NOW,
        )

        await scheduler.check_once()
        await scheduler.check_once()

        assert len(alerts) == 1
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.NOTIFICATION_CHECK_FAILED in types


class TestFailures:
    """Tests for failure handling."""

    async def test_chime_failure_still_flags(self, storage, user, alerts, audit_logger, audit_storage, notification_settings):
        """Test a broken chime does not stop the alert or the flag write."""

        async def broken_chime() -> None:
            raise OSError("no output device")

        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            alert_sound=broken_chime,
            audit_logger=audit_logger,
            settings=notification_settings,
            clock=lambda: FIXED_NOW,
        )
        await _add(storage, user, timedelta(seconds=5))

        await scheduler.check_once()

        assert len(alerts) == 1
        assert (await storage.get_appointments(user.email))[0].notified is True
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.ALERT_SOUND_FAILED in types

    async def test_chime_disabled(self, storage, user, alerts, chimes, audit_logger):
        """Test no sound plays when the chime is turned off."""

        async def chime() -> None:
            chimes.append(True)

        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            alert_sound=chime,
            audit_logger=audit_logger,
            settings=NotificationSettings(chime_enabled=False),
            clock=lambda: FIXED_NOW,
        )
        await _add(storage, user, timedelta(seconds=5))

        await scheduler.check_once()

        assert len(alerts) == 1
        assert chimes == []

    async def test_load_failure_is_reported(self, user, alerts, audit_logger, audit_storage, notification_settings):
        """Test a storage outage yields no alerts and no exception."""

        class Offline(InMemoryStorage):
            async def get_appointments(self, user_id):
                raise StorageError("offline")

        scheduler = NotificationScheduler(
            Offline(),
            user.email,
            on_alert=alerts.append,
            audit_logger=audit_logger,
            settings=notification_settings,
            clock=lambda: FIXED_NOW,
        )

        assert await scheduler.check_once() == []
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.NOTIFICATION_CHECK_FAILED in types


class TestLifecycle:
    """Tests for start / stop."""

    async def test_start_checks_immediately(self, storage, user, alerts, audit_logger, notification_settings):
        """Test start runs one check right away, then keeps polling."""
        wakeups: list[float] = []
        release = asyncio.Event()

        async def fake_sleep(seconds: float) -> None:
            wakeups.append(seconds)
            await release.wait()

        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            audit_logger=audit_logger,
            settings=notification_settings,
            clock=lambda: FIXED_NOW,
            sleep=fake_sleep,
        )
        await _add(storage, user, timedelta(seconds=30))

        await scheduler.start()
        await settle()

        assert len(alerts) == 1
        assert scheduler.running
        assert wakeups == [30.0]

        await scheduler.stop()
        assert not scheduler.running

    async def test_polling_picks_up_new_appointments(self, storage, user, alerts, audit_logger, notification_settings):
        """Test an appointment added later alerts on the next tick."""
        ticks: asyncio.Queue = asyncio.Queue()

        async def fake_sleep(seconds: float) -> None:
            await ticks.get()

        scheduler = NotificationScheduler(
            storage,
            user.email,
            on_alert=alerts.append,
            audit_logger=audit_logger,
            settings=notification_settings,
            clock=lambda: FIXED_NOW,
            sleep=fake_sleep,
        )
        await scheduler.start()
        assert alerts == []

        await _add(storage, user, timedelta(seconds=45))
        ticks.put_nowait(None)
        await settle()

        assert len(alerts) == 1
        await scheduler.stop()
