"""
Chat Dispatcher

Turn-based conversation over typed text and recorded voice notes.

FLOW (one turn):
    Idle -> Sending -> (AwaitingToolResolution -> Sending)* -> Complete | Failed

1. Validate the turn (empty / audio too short -> error turn, nothing sent)
2. Send it with bounded retry (transient failures only, linear backoff)
3. For every function call in the reply:
   - requestManualEntry -> "form requested" turn + acknowledgment, no storage
   - anything else -> ToolExecutionBridge
4. Send all ToolResults back in ONE follow-up; its text is the reply
5. Silent reply after a successful mutation -> short confirmation
6. Voice-originated turns get a spoken reply; typed turns never do

INVARIANT: Turns are serialized and appended to the history exactly
once, in send order. Every function call in a reply gets exactly one
correlated ToolResult before the follow-up is sent.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from expense_assistant.agents.prompts import chat_system_prompt, greeting
from expense_assistant.audit import AuditLogger, create_correlation_id
from expense_assistant.config import ChatSettings, get_settings
from expense_assistant.models.conversation import (
    AudioClip,
    ConversationTurn,
    ToolCall,
    ToolResult,
    TurnRole,
)
from expense_assistant.models.domain import Appointment, Expense, User
from expense_assistant.services.audio.interface import AudioDeviceError, ClipPlayer
from expense_assistant.services.audio.pcm import pcm16_to_float
from expense_assistant.services.genai.interface import (
    ChatSession,
    ModelReply,
    ModelService,
    ModelServiceError,
    TransientServiceError,
)
from expense_assistant.tools.bridge import ToolExecutionBridge
from expense_assistant.tools.declarations import TOOL_DECLARATIONS
from expense_assistant.validation.validator import TurnValidationError, TurnValidator


logger = structlog.get_logger(__name__)

MANUAL_ENTRY_ACK = {"message": "Form shown"}


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_TOOL_RESOLUTION = "awaiting_tool_resolution"
    COMPLETE = "complete"
    FAILED = "failed"


class ChatDispatcher:
    """
    Runs chat turns against the model service.

    Usage:
        dispatcher = ChatDispatcher(model_service, bridge, user)
        new_turns = await dispatcher.send_message(text="chrit khobz b 5 dh")
    """

    def __init__(
        self,
        model_service: ModelService,
        bridge: ToolExecutionBridge,
        user: User,
        audit_logger: Optional[AuditLogger] = None,
        clip_player: Optional[ClipPlayer] = None,
        settings: Optional[ChatSettings] = None,
        speech_sample_rate: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._model_service = model_service
        self._bridge = bridge
        self._audit = audit_logger or AuditLogger()
        self._clip_player = clip_player
        self._settings = settings or get_settings().chat
        if speech_sample_rate is None:
            speech_sample_rate = get_settings().live_audio.output_sample_rate
        self._speech_sample_rate = speech_sample_rate
        self._clock = clock
        self._sleep = sleep
        self._validator = TurnValidator(self._settings.min_audio_bytes)

        self._lock = asyncio.Lock()
        self._state = TurnState.IDLE
        self._user = user
        self._history: list[ConversationTurn] = []
        self._chat: ChatSession = self._start_context()

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    @property
    def user(self) -> User:
        return self._user

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def history(self) -> list[ConversationTurn]:
        return list(self._history)

    def _start_context(self) -> ChatSession:
        """Fresh chat context seeded with the current wall-clock time."""
        self._history = [ConversationTurn(role=TurnRole.MODEL, text=greeting(self._user))]
        return self._model_service.start_chat(
            chat_system_prompt(self._user, self._clock(), self._bridge.currency),
            TOOL_DECLARATIONS,
        )

    async def set_user(self, user: User) -> None:
        """
        Switch the active user.

        A different identity gets a brand new context and history; the
        same identity (e.g. an edited budget) only refreshes the profile.
        Waits for a turn in flight to finish first, so its tool results
        reach the context that asked for them.
        """
        async with self._lock:
            identity_changed = user.email != self._user.email
            self._user = user
            if identity_changed:
                self._chat = self._start_context()
                self._state = TurnState.IDLE

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        text: Optional[str] = None,
        audio: Optional[AudioClip] = None,
    ) -> list[ConversationTurn]:
        """
        Run one turn to completion.

        Returns:
            The turns appended to the history by this call, in order.
            Failures are reported as an error turn, never raised.
        """
        async with self._lock:
            correlation_id = create_correlation_id()
            appended: list[ConversationTurn] = []

            def append(turn: ConversationTurn) -> None:
                self._history.append(turn)
                appended.append(turn)

            try:
                cleaned = self._validator.validate(text, audio)
            except TurnValidationError as e:
                self._state = TurnState.FAILED
                await self._audit.log_turn_rejected(self._user.email, str(e), correlation_id)
                append(ConversationTurn.error(str(e)))
                return appended

            append(ConversationTurn(role=TurnRole.USER, text=cleaned, audio=audio))
            await self._audit.log_turn_received(
                user_id=self._user.email,
                has_text=cleaned is not None,
                has_audio=audio is not None,
                correlation_id=correlation_id,
            )

            try:
                await self._run_turn(cleaned, audio, correlation_id, append)
            except ModelServiceError as e:
                self._state = TurnState.FAILED
                logger.error("chat_turn_failed", error=str(e), correlation_id=str(correlation_id))
                await self._audit.log_turn_failed(self._user.email, str(e), correlation_id)
                append(ConversationTurn.error(f"Mochkil: {e}"))

            return appended

    async def _run_turn(
        self,
        text: Optional[str],
        audio: Optional[AudioClip],
        correlation_id: UUID,
        append: Callable[[ConversationTurn], None],
    ) -> None:
        self._state = TurnState.SENDING
        reply = await self._send_with_retry(
            lambda: self._chat.send_user_turn(text=text, audio=audio),
            correlation_id,
        )

        tool_calls = 0
        mutated = False
        expense_card: Optional[Expense] = None
        appointment_card: Optional[Appointment] = None
        rounds = 0

        while reply.has_function_calls:
            if rounds >= self._settings.max_tool_rounds:
                raise ModelServiceError("Too many tool rounds in one turn")
            rounds += 1

            self._state = TurnState.AWAITING_TOOL_RESOLUTION
            results: list[ToolResult] = []
            for call in reply.function_calls:
                tool_calls += 1
                if call.is_manual_entry:
                    results.append(await self._request_manual_entry(call, correlation_id, append))
                    continue

                execution, result = await self._bridge.execute_call(
                    call, self._user, correlation_id
                )
                results.append(result)
                mutated = mutated or execution.mutated
                if execution.user is not None:
                    self._user = execution.user
                if execution.expense is not None:
                    expense_card = execution.expense
                if execution.appointment is not None:
                    appointment_card = execution.appointment

            self._state = TurnState.SENDING
            reply = await self._send_with_retry(
                lambda: self._chat.send_tool_results(results),
                correlation_id,
            )

        reply_text = reply.text
        if not reply_text and mutated:
            reply_text = self._settings.confirmation_text

        spoken = False
        if reply_text or expense_card or appointment_card:
            turn = ConversationTurn(
                role=TurnRole.MODEL,
                text=reply_text,
                expense=expense_card,
                appointment=appointment_card,
            )
            if audio is not None and reply_text:
                turn.audio = await self._speak(reply_text, correlation_id)
                spoken = turn.audio is not None
            append(turn)

        self._state = TurnState.COMPLETE
        await self._audit.log_turn_completed(
            user_id=self._user.email,
            tool_calls=tool_calls,
            spoken=spoken,
            correlation_id=correlation_id,
        )

    async def _request_manual_entry(
        self,
        call: ToolCall,
        correlation_id: UUID,
        append: Callable[[ConversationTurn], None],
    ) -> ToolResult:
        request = call.manual_entry_request()
        append(ConversationTurn(role=TurnRole.MODEL, manual_entry=request))
        await self._audit.log_manual_entry_requested(
            user_id=self._user.email,
            prefilled_description=request.prefilled_description,
            correlation_id=correlation_id,
        )
        return ToolResult(call_id=call.call_id, name=call.name, payload=dict(MANUAL_ENTRY_ACK))

    async def _send_with_retry(
        self,
        send: Callable[[], Awaitable[ModelReply]],
        correlation_id: UUID,
    ) -> ModelReply:
        """
        Send with up to max_send_attempts tries.

        Attempt N is followed by a wait of N x retry_base_delay_seconds.
        Only TransientServiceError is retried; the last error is raised.
        """
        max_attempts = self._settings.max_send_attempts
        base_delay = self._settings.retry_base_delay_seconds
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_incrementing(start=base_delay, increment=base_delay),
            retry=retry_if_exception_type(TransientServiceError),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                try:
                    reply = await send()
                except TransientServiceError as e:
                    number = attempt.retry_state.attempt_number
                    if number < max_attempts:
                        await self._audit.log_send_retried(number, str(e), correlation_id)
                    raise
        return reply

    async def _speak(self, text: str, correlation_id: UUID) -> Optional[AudioClip]:
        """Synthesize and play a spoken reply. Failures are logged, never raised."""
        try:
            pcm = await self._model_service.synthesize_speech(text)
        except ModelServiceError as e:
            await self._audit.log_speech_synthesis_failed(str(e), correlation_id)
            return None

        clip = AudioClip.from_pcm16(pcm, self._speech_sample_rate)
        if self._clip_player is not None:
            try:
                await self._clip_player.play(pcm16_to_float(pcm), self._speech_sample_rate)
            except AudioDeviceError as e:
                logger.warning("reply_playback_failed", error=str(e))
        return clip
