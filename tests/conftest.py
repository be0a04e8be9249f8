"""
Shared fixtures and fakes.

No real API calls or audio devices in tests: the model service, the
live channel and the audio hardware are replaced by scripted fakes.
"""

import asyncio
from datetime import datetime
from typing import Optional

import numpy as np
import pytest

from expense_assistant.audit import AuditLogger
from expense_assistant.config import (
    ChatSettings,
    LiveAudioSettings,
    NotificationSettings,
)
from expense_assistant.models.conversation import ToolCall, ToolResult
from expense_assistant.models.domain import User
from expense_assistant.services.audio.interface import (
    ClipPlayer,
    DeviceUnavailableError,
    MicrophoneCapture,
    PlaybackOutput,
    PlaybackSource,
)
from expense_assistant.services.genai.interface import (
    ChatSession,
    LiveChannel,
    ModelReply,
    ModelService,
)
from expense_assistant.services.storage import InMemoryAuditStorage, InMemoryStorage
from expense_assistant.tools.bridge import ToolExecutionBridge


FIXED_NOW = datetime(2025, 3, 1, 16, 0, 0)


async def settle(rounds: int = 20) -> None:
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def reply(text: Optional[str] = None, *calls: ToolCall) -> ModelReply:
    return ModelReply(text=text, function_calls=list(calls))


def call(name: str, call_id: Optional[str] = None, **arguments) -> ToolCall:
    return ToolCall(call_id=call_id, name=name, arguments=arguments)


# =============================================================================
# MODEL SERVICE
# =============================================================================

class FakeChatSession(ChatSession):
    """Pops scripted replies (or exceptions) from the owning service."""

    def __init__(self, service: "FakeModelService", system_prompt: str):
        self._service = service
        self.system_prompt = system_prompt
        self.user_turns: list[tuple] = []
        self.tool_results: list[list[ToolResult]] = []

    async def _next(self) -> ModelReply:
        self._service.send_count += 1
        if self._service.reply_gate is not None:
            await self._service.reply_gate.wait()
        await asyncio.sleep(0)
        item = self._service.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def send_user_turn(self, text=None, audio=None) -> ModelReply:
        self.user_turns.append((text, audio))
        return await self._next()

    async def send_tool_results(self, results: list[ToolResult]) -> ModelReply:
        self.tool_results.append(list(results))
        return await self._next()


class FakeLiveChannel(LiveChannel):
    """Inbound events are pushed by the test; None ends the stream."""

    def __init__(self):
        self.events: asyncio.Queue = asyncio.Queue()
        self.sent_audio: list[bytes] = []
        self.sent_results: list[list[ToolResult]] = []
        self.close_count = 0
        self.calls: Optional[list[str]] = None

    def push(self, event) -> None:
        self.events.put_nowait(event)

    async def send_audio(self, pcm: bytes) -> None:
        self.sent_audio.append(pcm)

    async def send_tool_results(self, results: list[ToolResult]) -> None:
        self.sent_results.append(list(results))

    async def receive(self):
        while True:
            event = await self.events.get()
            if event is None:
                return
            if isinstance(event, Exception):
                raise event
            yield event

    async def close(self) -> None:
        self.close_count += 1
        if self.calls is not None:
            self.calls.append("channel.close")


class FakeModelService(ModelService):
    def __init__(self):
        self.replies: list = []
        self.send_count = 0
        self.chats: list[FakeChatSession] = []
        self.reply_gate: Optional[asyncio.Event] = None

        self.speech = b"\x00\x10" * 2400
        self.speech_error: Optional[Exception] = None
        self.spoken: list[str] = []

        self.live_channel = FakeLiveChannel()
        self.connect_error: Optional[Exception] = None
        self.connect_gate: Optional[asyncio.Event] = None
        self.live_prompts: list[str] = []

    def start_chat(self, system_prompt: str, tool_declarations: list[dict]) -> ChatSession:
        session = FakeChatSession(self, system_prompt)
        self.chats.append(session)
        return session

    @property
    def chat(self) -> FakeChatSession:
        return self.chats[-1]

    async def synthesize_speech(self, text: str) -> bytes:
        self.spoken.append(text)
        if self.speech_error is not None:
            raise self.speech_error
        return self.speech

    async def connect_live(self, system_prompt: str, tool_declarations: list[dict]) -> LiveChannel:
        self.live_prompts.append(system_prompt)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        return self.live_channel


# =============================================================================
# AUDIO
# =============================================================================

class FakeMicrophone(MicrophoneCapture):
    def __init__(self, calls: list[str]):
        self.calls = calls
        self.frames: asyncio.Queue = asyncio.Queue()
        self.start_error: Optional[Exception] = None
        self.close_error: Optional[Exception] = None

    def push(self, frame: np.ndarray) -> None:
        self.frames.put_nowait(frame)

    async def start(self) -> None:
        self.calls.append("mic.start")
        if self.start_error is not None:
            raise self.start_error

    async def read(self) -> np.ndarray:
        return await self.frames.get()

    def stop(self) -> None:
        self.calls.append("mic.stop")

    def close(self) -> None:
        self.calls.append("mic.close")
        if self.close_error is not None:
            raise self.close_error


class FakeSource(PlaybackSource):
    def __init__(self, calls: list[str]):
        self._calls = calls
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True
        self._calls.append("source.stop")


class FakeOutput(PlaybackOutput):
    """Output whose clock is set by the test."""

    def __init__(self, calls: list[str], sample_rate: int = 24000):
        self.calls = calls
        self.now = 0.0
        self._sample_rate = sample_rate
        self.scheduled: list[tuple] = []
        self.sources: list[FakeSource] = []
        self.start_error: Optional[Exception] = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        return self.now

    async def start(self) -> None:
        self.calls.append("output.start")
        if self.start_error is not None:
            raise self.start_error

    def play_at(self, samples, start_time, on_ended) -> PlaybackSource:
        source = FakeSource(self.calls)
        self.scheduled.append((len(samples), start_time, on_ended))
        self.sources.append(source)
        return source

    def finish(self, index: int) -> None:
        """Simulate buffer `index` playing to its end."""
        self.scheduled[index][2]()

    def close(self) -> None:
        self.calls.append("output.close")


class FakeClipPlayer(ClipPlayer):
    def __init__(self):
        self.played: list[tuple[int, int]] = []

    async def play(self, samples, sample_rate: int) -> None:
        self.played.append((len(samples), sample_rate))


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def user() -> User:
    return User(email="sara@example.com", name="Sara", budget=5000.0)


@pytest.fixture
def storage(user) -> InMemoryStorage:
    store = InMemoryStorage()
    store._users[user.email] = user.model_copy()
    return store


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def bridge(storage, audit_logger) -> ToolExecutionBridge:
    return ToolExecutionBridge(storage, audit_logger=audit_logger)


@pytest.fixture
def model_service() -> FakeModelService:
    return FakeModelService()


@pytest.fixture
def chat_settings() -> ChatSettings:
    return ChatSettings(
        max_send_attempts=3,
        retry_base_delay_seconds=1.0,
        min_audio_bytes=100,
        max_tool_rounds=4,
    )


@pytest.fixture
def live_settings() -> LiveAudioSettings:
    return LiveAudioSettings(activity_interval_seconds=0.01, activity_bars=5)


@pytest.fixture
def notification_settings() -> NotificationSettings:
    return NotificationSettings(
        check_interval_seconds=30.0,
        lead_window_seconds=60.0,
        overdue_window_seconds=3600.0,
        chime_enabled=True,
    )


@pytest.fixture
def device_calls() -> list[str]:
    return []


@pytest.fixture
def microphone(device_calls) -> FakeMicrophone:
    return FakeMicrophone(device_calls)


@pytest.fixture
def output(device_calls) -> FakeOutput:
    return FakeOutput(device_calls)


@pytest.fixture
def clip_player() -> FakeClipPlayer:
    return FakeClipPlayer()


@pytest.fixture
def unavailable_microphone(device_calls) -> FakeMicrophone:
    mic = FakeMicrophone(device_calls)
    mic.start_error = DeviceUnavailableError("No microphone found")
    return mic
