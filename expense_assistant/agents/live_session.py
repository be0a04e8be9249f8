"""
Live Session Manager

Continuous two-way voice with the model service.

STATES:
    IDLE -> CONNECTING -> LISTENING <-> MUTED -> CLOSING -> CLOSED
(LISTENING and MUTED are the two faces of an open session.)

While open, three tasks run on the event loop:
1. Microphone pump: read frame -> (drop if muted) -> PCM16 -> channel
2. Receive loop: audio frames -> playback timeline,
                 interruption -> stop everything queued,
                 tool calls -> ToolExecutionBridge -> tool results
3. Activity indicator: pseudo-random bar heights for the UI

DESIGN DECISION: Mutating tools are not gated locally. The voice prompt
tells the model to confirm verbally before calling them, and every
call that arrives is executed.

INVARIANT: close() raises the closing flag before releasing anything.
Every callback checks it first, so late audio or tool calls arriving
during teardown are ignored.
"""

import asyncio
import random
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

import structlog

from expense_assistant.agents.prompts import live_system_prompt
from expense_assistant.audit import AuditLogger, create_correlation_id
from expense_assistant.config import LiveAudioSettings, get_settings
from expense_assistant.models.domain import User
from expense_assistant.services.audio.interface import (
    AudioDeviceError,
    DeviceUnavailableError,
    MicrophoneCapture,
    PlaybackOutput,
)
from expense_assistant.services.audio.pcm import float_to_pcm16, pcm16_to_float
from expense_assistant.services.audio.playback import PlaybackTimeline
from expense_assistant.services.genai.interface import (
    LiveAudioFrame,
    LiveChannel,
    LiveInterruption,
    LiveToolCall,
    ModelService,
    ModelServiceError,
)
from expense_assistant.tools.bridge import ToolExecution, ToolExecutionBridge
from expense_assistant.tools.declarations import TOOL_DECLARATIONS


logger = structlog.get_logger(__name__)

STATUS_INITIALIZING = "Initializing..."
STATUS_CONNECTING_MICROPHONE = "Connecting to microphone..."
STATUS_CONNECTING_MODEL = "Connecting to Gemini..."
STATUS_LISTENING = "Knasme3 (Listening)..."
STATUS_DISCONNECTED = "Disconnected"

ACTIVITY_IDLE_LEVEL = 10
ACTIVITY_MIN_LEVEL = 20
ACTIVITY_MAX_LEVEL = 69


class LiveSessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    MUTED = "muted"
    CLOSING = "closing"
    CLOSED = "closed"


OPEN_STATES = (LiveSessionState.LISTENING, LiveSessionState.MUTED)


class LiveSessionManager:
    """
    One realtime voice session. Single use: once closed, create a new one.

    Usage:
        async with LiveSessionManager(service, bridge, user, mic, output) as live:
            ...
    """

    def __init__(
        self,
        model_service: ModelService,
        bridge: ToolExecutionBridge,
        user: User,
        microphone: MicrophoneCapture,
        output: PlaybackOutput,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LiveAudioSettings] = None,
        currency: Optional[str] = None,
        on_status: Optional[Callable[[str], None]] = None,
        on_tool_execution: Optional[Callable[[ToolExecution], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ):
        self._model_service = model_service
        self._bridge = bridge
        self._user = user
        self._microphone = microphone
        self._output = output
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().live_audio
        self._currency = currency or get_settings().app.currency
        self._on_status = on_status
        self._on_tool_execution = on_tool_execution
        self._clock = clock
        self._rng = rng or random.Random()

        self._correlation_id: UUID = create_correlation_id()
        self._state = LiveSessionState.IDLE
        self._status = STATUS_INITIALIZING
        self._muted = False
        self._closing = False
        self._channel: Optional[LiveChannel] = None
        self._timeline = PlaybackTimeline(output)
        self._tasks: list[asyncio.Task] = []
        self._levels = self._idle_levels()

    # -------------------------------------------------------------------------
    # Observable state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LiveSessionState:
        return self._state

    @property
    def status_message(self) -> str:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._state in OPEN_STATES

    @property
    def is_muted(self) -> bool:
        return self._muted

    @property
    def user(self) -> User:
        return self._user

    def set_user(self, user: User) -> None:
        """Refresh the profile tool calls run against. Same identity only."""
        if user.email == self._user.email:
            self._user = user

    @property
    def playback(self) -> PlaybackTimeline:
        return self._timeline

    @property
    def activity_levels(self) -> list[int]:
        """Bar heights for the indicator; flat unless actively listening."""
        if self._state != LiveSessionState.LISTENING:
            return self._idle_levels()
        return list(self._levels)

    def _set_status(self, message: str) -> None:
        self._status = message
        if self._on_status is not None:
            self._on_status(message)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> "LiveSessionManager":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        """
        Acquire the microphone, connect the channel and start streaming.

        Raises:
            DeviceUnavailableError: Microphone or speaker missing; the
                session is CLOSED and may be retried with a new manager
            ModelServiceError: The channel could not be opened
        """
        if self._state != LiveSessionState.IDLE:
            raise RuntimeError(f"Live session already {self._state.value}")

        self._state = LiveSessionState.CONNECTING
        self._set_status(STATUS_CONNECTING_MICROPHONE)
        try:
            await self._microphone.start()
        except DeviceUnavailableError as e:
            # No automatic retry: the user reopens the session
            self._state = LiveSessionState.CLOSED
            self._set_status(f"Error: {e}")
            await self._audit.log_live_session_failed(
                self._user.email, "microphone", str(e), self._correlation_id
            )
            raise

        self._set_status(STATUS_CONNECTING_MODEL)
        try:
            await self._output.start()
            channel = await self._model_service.connect_live(
                live_system_prompt(self._user, self._clock(), self._currency),
                TOOL_DECLARATIONS,
            )
        except (AudioDeviceError, ModelServiceError) as e:
            await self._audit.log_live_session_failed(
                self._user.email, "connect", str(e), self._correlation_id
            )
            await self.close()
            self._set_status(f"Error: {e}")
            raise

        if self._closing:
            # Closed while the channel was still connecting
            await channel.close()
            return

        self._channel = channel
        self._state = LiveSessionState.MUTED if self._muted else LiveSessionState.LISTENING
        self._set_status(STATUS_LISTENING)
        self._tasks = [
            asyncio.create_task(self._pump_microphone(), name="live-microphone"),
            asyncio.create_task(self._receive_loop(), name="live-receive"),
            asyncio.create_task(self._animate_activity(), name="live-activity"),
        ]
        await self._audit.log_live_session_opened(self._user.email, self._correlation_id)

    async def close(self) -> None:
        """
        Tear the session down. Safe to call repeatedly and from any state.

        Order: closing flag, stop microphone, stop capture/playback work,
        release microphone, release output, close channel. Each step is
        guarded on its own so a failure never skips the rest.
        """
        if self._closing:
            return
        self._closing = True
        self._state = LiveSessionState.CLOSING

        failed_steps: list[str] = []
        steps = [
            ("stop_microphone", self._microphone.stop),
            ("stop_tasks", self._cancel_tasks),
            ("stop_playback", self._timeline.interrupt),
            ("close_microphone", self._microphone.close),
            ("close_output", self._output.close),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                failed_steps.append(name)
                logger.warning("live_close_step_failed", step=name, error=str(e))

        if self._channel is not None:
            try:
                await self._channel.close()
            except Exception as e:
                failed_steps.append("close_channel")
                logger.warning("live_close_step_failed", step="close_channel", error=str(e))

        await self._await_cancelled_tasks()

        self._state = LiveSessionState.CLOSED
        self._set_status(STATUS_DISCONNECTED)
        await self._audit.log_live_session_closed(
            self._user.email, failed_steps, self._correlation_id
        )

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    async def _await_cancelled_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _fail(self, stage: str, error: Exception) -> None:
        """A running session broke: report it and shut down."""
        if self._closing:
            return
        logger.error("live_session_failed", stage=stage, error=str(error))
        await self._audit.log_live_session_failed(
            self._user.email, stage, str(error), self._correlation_id
        )
        await self.close()
        self._set_status(f"Error: {error}")

    # -------------------------------------------------------------------------
    # Mute
    # -------------------------------------------------------------------------

    def set_muted(self, muted: bool) -> None:
        """Stop (or resume) outbound audio while keeping the channel open."""
        self._muted = muted
        if self._state in OPEN_STATES:
            self._state = LiveSessionState.MUTED if muted else LiveSessionState.LISTENING

    def toggle_mute(self) -> bool:
        self.set_muted(not self._muted)
        return self._muted

    # -------------------------------------------------------------------------
    # Outbound audio
    # -------------------------------------------------------------------------

    async def _pump_microphone(self) -> None:
        while not self._closing:
            frame = await self._microphone.read()
            if self._closing:
                return
            if self._muted:
                # Dropped before encoding: nothing leaves the device
                continue
            try:
                await self._channel.send_audio(float_to_pcm16(frame))
            except ModelServiceError as e:
                await self._fail("send_audio", e)
                return

    # -------------------------------------------------------------------------
    # Inbound events
    # -------------------------------------------------------------------------

    async def _receive_loop(self) -> None:
        try:
            async for event in self._channel.receive():
                if self._closing:
                    return
                if isinstance(event, LiveInterruption):
                    await self._handle_interruption()
                elif isinstance(event, LiveAudioFrame):
                    self._handle_audio(event.data)
                elif isinstance(event, LiveToolCall):
                    await self._handle_tool_call(event)
        except ModelServiceError as e:
            await self._fail("receive", e)
            return

        if not self._closing:
            await self._fail("receive", ModelServiceError("Connection closed by the service"))

    def _handle_audio(self, data: bytes) -> None:
        if self._closing:
            return
        try:
            self._timeline.enqueue(pcm16_to_float(data))
        except AudioDeviceError as e:
            logger.warning("live_playback_failed", error=str(e))

    async def _handle_interruption(self) -> None:
        if self._closing:
            return
        stopped = self._timeline.interrupt()
        await self._audit.log_live_interrupted(stopped, self._correlation_id)

    async def _handle_tool_call(self, event: LiveToolCall) -> None:
        results = []
        for call in event.calls:
            if self._closing:
                return
            execution, result = await self._bridge.execute_call(
                call, self._user, self._correlation_id
            )
            if execution.user is not None:
                self._user = execution.user
            if self._on_tool_execution is not None:
                self._on_tool_execution(execution)
            results.append(result)

        if self._closing:
            return
        try:
            await self._channel.send_tool_results(results)
        except ModelServiceError as e:
            await self._fail("send_tool_results", e)

    # -------------------------------------------------------------------------
    # Activity indicator
    # -------------------------------------------------------------------------

    def _idle_levels(self) -> list[int]:
        return [ACTIVITY_IDLE_LEVEL] * self._settings.activity_bars

    def refresh_activity(self) -> list[int]:
        """Sample new bar heights. Carries no meaning beyond feedback."""
        if self._state == LiveSessionState.LISTENING:
            self._levels = [
                self._rng.randint(ACTIVITY_MIN_LEVEL, ACTIVITY_MAX_LEVEL)
                for _ in range(self._settings.activity_bars)
            ]
        else:
            self._levels = self._idle_levels()
        return list(self._levels)

    async def _animate_activity(self) -> None:
        while not self._closing:
            self.refresh_activity()
            await asyncio.sleep(self._settings.activity_interval_seconds)
