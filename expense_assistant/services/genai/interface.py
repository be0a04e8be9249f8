"""
Abstract Model Service Interface

DESIGN DECISION: The generative-model SDK is consumed through three
narrow capabilities:
1. Turn-based chat with function calling
2. Text-to-speech
3. A live bidirectional audio channel

The chat dispatcher and the live session manager depend only on these
abstractions, so both can be exercised against fakes without network
access or audio hardware.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional, Union

from pydantic import BaseModel, Field

from expense_assistant.models.conversation import AudioClip, ToolCall, ToolResult


class ModelServiceError(Exception):
    """Base exception for model service failures. Not retried."""
    pass


class TransientServiceError(ModelServiceError):
    """Network or service hiccup; the same request may succeed if retried."""
    pass


class ModelReply(BaseModel):
    """One response from the chat capability."""

    text: Optional[str] = None
    function_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def has_function_calls(self) -> bool:
        return bool(self.function_calls)


# =============================================================================
# LIVE CHANNEL EVENTS
# =============================================================================

class LiveAudioFrame(BaseModel):
    """A chunk of raw PCM16 audio streamed back by the model."""
    data: bytes


class LiveToolCall(BaseModel):
    """One or more function calls issued mid-session."""
    calls: list[ToolCall]


class LiveInterruption(BaseModel):
    """The user started speaking over the model (barge-in)."""
    pass


LiveEvent = Union[LiveAudioFrame, LiveToolCall, LiveInterruption]


class ChatSession(ABC):
    """
    A stateful chat context.

    The context keeps the conversation history on the service side, so
    tool results are sent as a follow-up in the same session.
    """

    @abstractmethod
    async def send_user_turn(
        self,
        text: Optional[str] = None,
        audio: Optional[AudioClip] = None,
    ) -> ModelReply:
        """
        Send a user turn (text and/or recorded audio).

        Raises:
            TransientServiceError: On retryable failures
            ModelServiceError: On anything else
        """
        pass

    @abstractmethod
    async def send_tool_results(self, results: list[ToolResult]) -> ModelReply:
        """Send every result for the previous reply's calls in one message."""
        pass


class LiveChannel(ABC):
    """An open realtime audio channel."""

    @abstractmethod
    async def send_audio(self, pcm: bytes) -> None:
        """Stream one frame of PCM16 microphone audio."""
        pass

    @abstractmethod
    async def send_tool_results(self, results: list[ToolResult]) -> None:
        pass

    @abstractmethod
    def receive(self) -> AsyncIterator[LiveEvent]:
        """
        Iterate inbound events until the channel is closed.

        Raises:
            ModelServiceError: If the connection drops
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class ModelService(ABC):
    """The three capabilities consumed from the generative-model service."""

    @abstractmethod
    def start_chat(
        self,
        system_prompt: str,
        tool_declarations: list[dict],
    ) -> ChatSession:
        """Create a fresh chat context."""
        pass

    @abstractmethod
    async def synthesize_speech(self, text: str) -> bytes:
        """
        Render text to speech.

        Returns:
            Raw mono PCM16 audio at the service's output rate
        """
        pass

    @abstractmethod
    async def connect_live(
        self,
        system_prompt: str,
        tool_declarations: list[dict],
    ) -> LiveChannel:
        """
        Open a live audio channel.

        Raises:
            ModelServiceError: If the connection cannot be established
        """
        pass
