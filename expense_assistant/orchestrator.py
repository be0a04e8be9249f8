"""
Main Orchestrator for Expense Assistant

This module ties together all the components and owns the lifetime of
one UI session:
1. Sign-in -> ChatDispatcher (fresh context per identity) + NotificationScheduler
2. Typed / recorded turns -> ChatDispatcher
3. Continuous voice -> LiveSessionManager (at most one open at a time)
4. Sign-out -> stop alerts, close live audio

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every domain mutation goes through the ToolExecutionBridge, including
  the manual expense form, so there is one code path for state changes
- Opening a live session always closes the previous one first
- Every step is audited

This is the "glue" the UI layer talks to.
"""

import datetime as dt
from functools import partial
from typing import Callable, Literal, Optional

import structlog

from expense_assistant.agents import ChatDispatcher, LiveSessionManager
from expense_assistant.audit import AuditLogger
from expense_assistant.config import Settings, get_settings
from expense_assistant.models.conversation import AudioClip, ConversationTurn
from expense_assistant.models.domain import (
    Appointment,
    AppointmentStatus,
    Expense,
    SpendingSummary,
    User,
)
from expense_assistant.notifications import NotificationScheduler
from expense_assistant.services.audio import (
    ClipPlayer,
    MicrophoneCapture,
    PlaybackOutput,
    SoundDeviceClipPlayer,
    SoundDeviceMicrophone,
    SoundDeviceOutput,
    play_chime,
)
from expense_assistant.services.genai import GeminiModelService, ModelService
from expense_assistant.services.storage import (
    AssistantStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    InMemoryStorage,
    StorageError,
)
from expense_assistant.tools.bridge import ToolExecution, ToolExecutionBridge
from expense_assistant.tools.declarations import (
    ADD_EXPENSE,
    DELETE_APPOINTMENT,
    UPDATE_APPOINTMENT_STATUS,
)


logger = structlog.get_logger(__name__)


class NotSignedInError(Exception):
    """An operation needs an active user."""
    pass


class AssistantSession:
    """
    One UI session.

    Flow:
    1. sign_in / register -> dispatcher + alerts start
    2. send_message, open_live_session, submit_manual_expense, ...
    3. sign_out -> everything stops

    Only one live session may be open; opening another closes it first.
    """

    def __init__(
        self,
        storage: AssistantStorageInterface,
        model_service: ModelService,
        audit_logger: Optional[AuditLogger] = None,
        clip_player: Optional[ClipPlayer] = None,
        microphone_factory: Optional[Callable[[], MicrophoneCapture]] = None,
        output_factory: Optional[Callable[[], PlaybackOutput]] = None,
        on_alert: Optional[Callable[[Appointment], None]] = None,
        settings: Optional[Settings] = None,
    ):
        self._storage = storage
        self._model_service = model_service
        self._audit = audit_logger or AuditLogger()
        self._clip_player = clip_player
        self._settings = settings or get_settings()

        live_audio = self._settings.live_audio
        self._microphone_factory = microphone_factory or partial(
            SoundDeviceMicrophone, live_audio.input_sample_rate, live_audio.block_size
        )
        self._output_factory = output_factory or partial(
            SoundDeviceOutput, live_audio.output_sample_rate
        )
        self._on_alert = on_alert

        app = self._settings.app
        self._bridge = ToolExecutionBridge(
            storage,
            audit_logger=self._audit,
            recent_expenses_limit=self._settings.chat.recent_expenses_limit,
            currency=app.currency,
        )

        self._user: Optional[User] = None
        self._dispatcher: Optional[ChatDispatcher] = None
        self._scheduler: Optional[NotificationScheduler] = None
        self._live: Optional[LiveSessionManager] = None
        self._active_alert: Optional[Appointment] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def bridge(self) -> ToolExecutionBridge:
        return self._bridge

    @property
    def history(self) -> list[ConversationTurn]:
        return self._dispatcher.history if self._dispatcher else []

    @property
    def live_session(self) -> Optional[LiveSessionManager]:
        return self._live

    @property
    def active_alert(self) -> Optional[Appointment]:
        return self._active_alert

    def _require_user(self) -> User:
        if self._user is None:
            raise NotSignedInError("No user is signed in")
        return self._user

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    async def register(self, email: str, name: str) -> User:
        """
        Create an account and sign in.

        Raises:
            DuplicateError: If the email is taken
        """
        user = await self._storage.register_user(email.strip(), name.strip())
        await self._activate(user)
        return user

    async def sign_in(self, email: str) -> User:
        """
        Sign in an existing user.

        Raises:
            NotFoundError: If no such user exists
        """
        user = await self._storage.get_user(email.strip())
        await self._activate(user)
        return user

    async def update_profile(
        self,
        name: Optional[str] = None,
        budget: Optional[float] = None,
    ) -> User:
        """Edit the signed-in user's name or budget."""
        user = self._require_user()
        changes = {}
        if name is not None:
            changes["name"] = name.strip()
        if budget is not None:
            changes["budget"] = budget
        updated = User.model_validate({**user.model_dump(), **changes})
        updated = await self._storage.update_user(updated)
        await self._set_user(updated)
        return updated

    async def sign_out(self) -> None:
        """Stop alerts and live audio and forget the user."""
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        self._user = None
        self._dispatcher = None
        self._active_alert = None
        await self.close_live_session()

    async def _activate(self, user: User) -> None:
        identity_changed = self._user is None or self._user.email != user.email
        if identity_changed:
            await self.sign_out()
        await self._set_user(user)

        if self._scheduler is None:
            self._scheduler = NotificationScheduler(
                self._storage,
                user.email,
                on_alert=self._handle_alert,
                alert_sound=partial(play_chime, self._clip_player) if self._clip_player else None,
                audit_logger=self._audit,
                settings=self._settings.notifications,
            )
            await self._scheduler.start()

    async def _set_user(self, user: User) -> None:
        """Hand the current profile to every component that acts for the user."""
        self._user = user
        if self._live is not None:
            self._live.set_user(user)
        if self._dispatcher is None:
            self._dispatcher = ChatDispatcher(
                self._model_service,
                self._bridge,
                user,
                audit_logger=self._audit,
                clip_player=self._clip_player,
                settings=self._settings.chat,
                speech_sample_rate=self._settings.live_audio.output_sample_rate,
            )
        else:
            await self._dispatcher.set_user(user)

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        text: Optional[str] = None,
        audio: Optional[AudioClip] = None,
    ) -> list[ConversationTurn]:
        """Run one typed or recorded turn. Returns the new turns."""
        self._require_user()
        turns = await self._dispatcher.send_message(text=text, audio=audio)
        # setBudget may have refreshed the profile
        self._user = self._dispatcher.user
        if self._live is not None:
            self._live.set_user(self._user)
        return turns

    async def submit_manual_expense(
        self,
        amount: float,
        category: str,
        description: str,
        date: dt.date,
    ) -> ToolExecution:
        """Save the manual expense form through the same path as the model."""
        user = self._require_user()
        return await self._bridge.execute(
            ADD_EXPENSE,
            {
                "amount": amount,
                "category": category,
                "description": description,
                "date": date.isoformat(),
            },
            user,
        )

    # -------------------------------------------------------------------------
    # Dashboard & appointments
    # -------------------------------------------------------------------------

    async def list_expenses(self) -> list[Expense]:
        """All of the user's expenses, newest first."""
        user = self._require_user()
        return await self._storage.get_expenses(user.email)

    async def spending_summary(self) -> SpendingSummary:
        """Totals for the dashboard budget bar."""
        user = self._require_user()
        expenses = await self._storage.get_expenses(user.email)
        return SpendingSummary.from_expenses(expenses, user.budget)

    async def list_appointments(
        self,
        view: Optional[Literal["upcoming", "history"]] = None,
    ) -> list[Appointment]:
        """
        The user's appointments.

        Args:
            view: "upcoming" for scheduled, future ones (soonest first),
                  "history" for everything else (newest first),
                  None for all of them in date order
        """
        user = self._require_user()
        appointments = await self._storage.get_appointments(user.email)
        if view is None:
            return appointments

        now = dt.datetime.now()

        def upcoming(a: Appointment) -> bool:
            return a.status == AppointmentStatus.SCHEDULED and a.date > now

        if view == "upcoming":
            return sorted((a for a in appointments if upcoming(a)), key=lambda a: a.date)
        return sorted(
            (a for a in appointments if not upcoming(a)),
            key=lambda a: a.date,
            reverse=True,
        )

    async def set_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
    ) -> ToolExecution:
        """Mark an appointment completed or cancelled from the list screen."""
        user = self._require_user()
        return await self._bridge.execute(
            UPDATE_APPOINTMENT_STATUS,
            {"id": appointment_id, "status": AppointmentStatus(status).value},
            user,
        )

    async def delete_appointment(self, appointment_id: str) -> ToolExecution:
        user = self._require_user()
        return await self._bridge.execute(DELETE_APPOINTMENT, {"id": appointment_id}, user)

    # -------------------------------------------------------------------------
    # Live voice
    # -------------------------------------------------------------------------

    async def open_live_session(
        self,
        on_status: Optional[Callable[[str], None]] = None,
        on_tool_execution: Optional[Callable[[ToolExecution], None]] = None,
    ) -> LiveSessionManager:
        """
        Start continuous voice mode, closing any session already open.

        Raises:
            DeviceUnavailableError / ModelServiceError: The session could
                not be opened; it is already closed and can be retried
        """
        user = self._require_user()
        await self.close_live_session()

        def handle_tool_execution(execution: ToolExecution) -> None:
            if execution.user is not None:
                self._user = execution.user
            if on_tool_execution is not None:
                on_tool_execution(execution)

        live = LiveSessionManager(
            self._model_service,
            self._bridge,
            user,
            self._microphone_factory(),
            self._output_factory(),
            audit_logger=self._audit,
            settings=self._settings.live_audio,
            currency=self._settings.app.currency,
            on_status=on_status,
            on_tool_execution=handle_tool_execution,
        )
        self._live = live
        try:
            await live.open()
        except Exception:
            self._live = None
            raise
        return live

    async def close_live_session(self) -> None:
        if self._live is None:
            return
        live, self._live = self._live, None
        await live.close()
        if self._user is None:
            return

        # Stored profile wins: chat and profile edits may have landed
        # while the call was open
        try:
            user = await self._storage.get_user(self._user.email)
        except StorageError as e:
            logger.warning("user_reload_failed", user_id=self._user.email, error=str(e))
            return
        await self._set_user(user)

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def _handle_alert(self, appointment: Appointment) -> None:
        self._active_alert = appointment
        if self._on_alert is not None:
            self._on_alert(appointment)

    def dismiss_alert(self) -> None:
        self._active_alert = None


def create_app_components(
    use_storage: bool = True,
) -> AssistantSession:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False (or leave Sheets unconfigured) to run
                    on in-memory storage.

    Returns:
        An AssistantSession wired to Gemini and the local audio devices
    """
    storage: AssistantStorageInterface
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            storage = InMemoryStorage(get_settings().app.default_budget)
            audit_logger = AuditLogger()  # Local-only logging
    else:
        storage = InMemoryStorage(get_settings().app.default_budget)
        audit_logger = AuditLogger()  # Local-only logging

    return AssistantSession(
        storage=storage,
        model_service=GeminiModelService(),
        audit_logger=audit_logger,
        clip_player=SoundDeviceClipPlayer(),
    )
