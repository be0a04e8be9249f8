"""
Tests for the AssistantSession orchestrator.
"""

from datetime import date, datetime, timedelta

import pytest

from expense_assistant.agents import LiveSessionState
from expense_assistant.config import Settings
from expense_assistant.models.audit import AuditEventType
from expense_assistant.models.domain import AppointmentDraft, AppointmentStatus, AppointmentType
from expense_assistant.orchestrator import AssistantSession, NotSignedInError
from expense_assistant.services.audio import DeviceUnavailableError
from expense_assistant.services.genai import LiveToolCall
from expense_assistant.services.storage import InMemoryStorage, NotFoundError

from conftest import FakeLiveChannel, FakeMicrophone, FakeOutput, call, reply, settle


@pytest.fixture
def alerts() -> list:
    return []


@pytest.fixture
def session_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
async def session(session_storage, model_service, audit_logger, clip_player, device_calls, alerts):
    assistant = AssistantSession(
        storage=session_storage,
        model_service=model_service,
        audit_logger=audit_logger,
        clip_player=clip_player,
        microphone_factory=lambda: FakeMicrophone(device_calls),
        output_factory=lambda: FakeOutput(device_calls),
        on_alert=alerts.append,
        settings=Settings(),
    )
    yield assistant
    await assistant.sign_out()


class TestAccount:
    """Tests for sign-in and profile changes."""

    async def test_register_signs_in(self, session):
        """Test registering starts a conversation for the new user."""
        user = await session.register("sara@example.com", "Sara")

        assert session.user == user
        assert "Sara" in session.history[0].text

    async def test_sign_in_unknown(self, session):
        """Test signing in with an unknown email fails."""
        with pytest.raises(NotFoundError):
            await session.sign_in("ghost@example.com")
        assert session.user is None

    async def test_switching_users_resets_history(self, session, model_service):
        """Test a different identity gets a fresh conversation."""
        await session.register("sara@example.com", "Sara")
        model_service.replies.append(reply("Ahlan"))
        await session.send_message(text="salam")
        await session.register("omar@example.com", "Omar")

        assert len(session.history) == 1
        assert "Omar" in session.history[0].text

    async def test_update_profile(self, session):
        """Test a budget edit is stored and keeps the conversation."""
        await session.register("sara@example.com", "Sara")

        updated = await session.update_profile(budget=1500)

        assert updated.budget == 1500.0
        assert session.user.budget == 1500.0
        assert len(session.history) == 1

    async def test_signed_out_operations_fail(self, session):
        """Test chat needs a signed-in user."""
        with pytest.raises(NotSignedInError):
            await session.send_message(text="salam")


class TestChatAndForms:
    """Tests for turns and the manual form."""

    async def test_budget_tool_refreshes_user(self, session, model_service):
        """Test a setBudget call during chat updates the session user."""
        await session.register("sara@example.com", "Sara")
        model_service.replies.extend([
            reply(None, call("setBudget", call_id="b", amount=2000)),
            reply("Safi."),
        ])

        await session.send_message(text="budget 2000")

        assert session.user.budget == 2000.0

    async def test_manual_expense_goes_through_bridge(self, session):
        """Test the manual form saves an expense the same way a tool call does."""
        user = await session.register("sara@example.com", "Sara")

        execution = await session.submit_manual_expense(
            amount=42.0, category="Food", description="Hanout", date=date(2025, 3, 1)
        )

        assert execution.ok
        assert execution.expense.user_id == user.email


class TestAlerts:
    """Tests for appointment alerts."""

    async def test_due_appointment_alerts_on_sign_in(self, session, session_storage, alerts, clip_player):
        """Test signing in checks appointments right away."""
        user = await session.register("sara@example.com", "Sara")
        await session.sign_out()
        await session_storage.add_appointment(AppointmentDraft(
            user_id=user.email,
            title="Tbib",
            date=datetime.now() + timedelta(seconds=30),
            type=AppointmentType.MEETING,
        ))

        await session.sign_in(user.email)

        assert session.active_alert is not None
        assert session.active_alert.title == "Tbib"
        assert len(alerts) == 1
        assert len(clip_player.played) == 1

        session.dismiss_alert()
        assert session.active_alert is None


class TestLiveSessions:
    """Tests for opening and closing live voice."""

    async def test_only_one_live_session(self, session, model_service):
        """Test opening a second session closes the first."""
        await session.register("sara@example.com", "Sara")

        first = await session.open_live_session()
        model_service.live_channel = FakeLiveChannel()
        second = await session.open_live_session()
        await settle()

        assert first.state == LiveSessionState.CLOSED
        assert second.is_open
        assert session.live_session is second

    async def test_failed_open_leaves_no_session(self, model_service, audit_logger, unavailable_microphone, device_calls):
        """Test a missing microphone leaves nothing half-open."""
        session = AssistantSession(
            storage=InMemoryStorage(),
            model_service=model_service,
            audit_logger=audit_logger,
            microphone_factory=lambda: unavailable_microphone,
            output_factory=lambda: FakeOutput(device_calls),
            settings=Settings(),
        )
        await session.register("sara@example.com", "Sara")

        with pytest.raises(DeviceUnavailableError):
            await session.open_live_session()
        assert session.live_session is None
        assert model_service.live_prompts == []

        await session.sign_out()

    async def test_sign_out_closes_live(self, session):
        """Test signing out closes the live session."""
        await session.register("sara@example.com", "Sara")
        live = await session.open_live_session()

        await session.sign_out()

        assert live.state == LiveSessionState.CLOSED
        assert session.user is None
        assert session.history == []

    async def test_close_keeps_budget_set_during_call(self, session, session_storage, model_service):
        """Test a chat setBudget made while voice is open survives closing it."""
        await session.register("sara@example.com", "Sara")
        await session.open_live_session()
        model_service.replies.extend([
            reply(None, call("setBudget", call_id="b", amount=2000)),
            reply("Safi."),
        ])
        await session.send_message(text="budget 2000")

        await session.close_live_session()

        stored = await session_storage.get_user("sara@example.com")
        assert session.user.budget == stored.budget == 2000.0

        renamed = await session.update_profile(name="Sara B")
        assert renamed.budget == 2000.0
        assert (await session_storage.get_user("sara@example.com")).budget == 2000.0

    async def test_close_keeps_profile_edit_during_call(self, session, session_storage, model_service):
        """Test a profile edit made while voice is open reaches later chat tools."""
        await session.register("sara@example.com", "Sara")
        await session.open_live_session()
        await session.update_profile(name="Sara B", budget=3000)

        await session.close_live_session()
        model_service.replies.extend([
            reply(None, call("getExpenses", call_id="g")),
            reply("Walou."),
        ])
        await session.send_message(text="chno chrit?")

        stored = await session_storage.get_user("sara@example.com")
        assert session.user.name == stored.name == "Sara B"
        assert session.user.budget == stored.budget == 3000.0

    async def test_live_budget_reaches_session(self, session, model_service):
        """Test a setBudget spoken during the call updates the session user at once."""
        await session.register("sara@example.com", "Sara")
        executions = []
        await session.open_live_session(on_tool_execution=executions.append)

        model_service.live_channel.push(LiveToolCall(calls=[call("setBudget", call_id="b", amount=1800)]))
        await settle()

        assert session.user.budget == 1800.0
        assert [e.tool_name for e in executions] == ["setBudget"]


class TestAppointmentsAndDashboard:
    """Tests for the list screens and their actions."""

    async def _add_appointment(self, storage, user, offset: timedelta, title: str):
        return await storage.add_appointment(AppointmentDraft(
            user_id=user.email,
            title=title,
            date=datetime.now() + offset,
            type=AppointmentType.MEETING,
        ))

    async def test_list_appointments_views(self, session, session_storage):
        """Test upcoming is soonest first and history is newest first."""
        user = await session.register("sara@example.com", "Sara")
        later = await self._add_appointment(session_storage, user, timedelta(days=2), "later")
        soon = await self._add_appointment(session_storage, user, timedelta(days=1), "soon")
        past = await self._add_appointment(session_storage, user, -timedelta(days=3), "past")
        done = await self._add_appointment(session_storage, user, timedelta(days=3), "done")
        await session.set_appointment_status(done.id, AppointmentStatus.COMPLETED)

        upcoming = await session.list_appointments("upcoming")
        history = await session.list_appointments("history")
        everything = await session.list_appointments()

        assert [a.id for a in upcoming] == [soon.id, later.id]
        assert [a.id for a in history] == [done.id, past.id]
        assert len(everything) == 4

    async def test_set_status_goes_through_bridge(self, session, session_storage, audit_storage):
        """Test marking an appointment cancelled is stored and audited as a tool run."""
        user = await session.register("sara@example.com", "Sara")
        appointment = await self._add_appointment(session_storage, user, timedelta(hours=2), "Tbib")

        execution = await session.set_appointment_status(appointment.id, "cancelled")

        assert execution.ok
        assert execution.appointment.status == AppointmentStatus.CANCELLED
        stored = (await session_storage.get_appointments(user.email))[0]
        assert stored.status == AppointmentStatus.CANCELLED
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.TOOL_EXECUTED in types

    async def test_set_status_unknown_id(self, session):
        """Test an unknown appointment id comes back as an error result."""
        await session.register("sara@example.com", "Sara")

        execution = await session.set_appointment_status("nope", AppointmentStatus.COMPLETED)

        assert not execution.ok
        assert execution.error == "Appointment not found"

    async def test_delete_appointment(self, session, session_storage):
        """Test deleting removes the appointment and repeating it is harmless."""
        user = await session.register("sara@example.com", "Sara")
        appointment = await self._add_appointment(session_storage, user, timedelta(hours=2), "Tbib")

        first = await session.delete_appointment(appointment.id)
        second = await session.delete_appointment(appointment.id)

        assert first.ok and second.ok
        assert await session.list_appointments() == []

    async def test_list_expenses_and_summary(self, session):
        """Test the dashboard sees every expense and the budget totals."""
        await session.register("sara@example.com", "Sara")
        await session.update_profile(budget=1000)
        for day, amount in ((1, 300.0), (3, 450.0), (2, 50.0)):
            await session.submit_manual_expense(
                amount=amount, category="Food", description="Hanout", date=date(2025, 3, day)
            )

        expenses = await session.list_expenses()
        summary = await session.spending_summary()

        assert [e.date.day for e in expenses] == [3, 2, 1]
        assert summary.total_spent == 800.0
        assert summary.remaining == 200.0
        assert summary.progress_percent == pytest.approx(80.0)

    async def test_summary_over_budget(self, session):
        """Test overspending caps the progress bar and goes negative on remaining."""
        await session.register("sara@example.com", "Sara")
        await session.update_profile(budget=100)
        await session.submit_manual_expense(
            amount=150.0, category="Food", description="Lham", date=date(2025, 3, 1)
        )

        summary = await session.spending_summary()

        assert summary.remaining == -50.0
        assert summary.progress_percent == 100.0

    async def test_lists_need_a_user(self, session):
        """Test the list screens need a signed-in user."""
        with pytest.raises(NotSignedInError):
            await session.list_appointments()
        with pytest.raises(NotSignedInError):
            await session.list_expenses()
