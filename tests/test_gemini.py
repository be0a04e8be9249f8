"""
Tests for the Gemini adapter.

The SDK objects are replaced with small fakes; only the translation to
and from google-genai types is exercised.
"""

import asyncio

import pytest
from google.genai import errors, types

from expense_assistant.models.conversation import ToolResult
from expense_assistant.services.genai import (
    LiveAudioFrame,
    LiveInterruption,
    LiveToolCall,
    ModelServiceError,
    TransientServiceError,
    map_service_error,
)
from expense_assistant.services.genai.gemini import GeminiChatSession, GeminiLiveChannel


def _response(*parts: types.Part) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=list(parts)))]
    )


class FakeChat:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.messages = []

    async def send_message(self, message):
        self.messages.append(message)
        if self.error is not None:
            raise self.error
        return self.response


class FakeLiveSession:
    def __init__(self, turns):
        self.turns = list(turns)
        self.tool_responses = []
        self.audio = []

    async def send_realtime_input(self, audio):
        self.audio.append(audio)

    async def send_tool_response(self, function_responses):
        self.tool_responses.append(function_responses)

    async def receive(self):
        if not self.turns:
            await asyncio.Event().wait()
        for message in self.turns.pop(0):
            yield message


class FakeLiveContext:
    def __init__(self):
        self.exited = False

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True


class TestErrorMapping:
    """Tests for transient / permanent classification."""

    def test_server_error_is_transient(self):
        """Test 5xx responses are retried."""
        error = errors.ServerError(503, {"error": {"message": "overloaded"}})
        assert isinstance(map_service_error(error), TransientServiceError)

    def test_rate_limit_is_transient(self):
        """Test 429 responses are retried."""
        error = errors.ClientError(429, {"error": {"message": "quota"}})
        assert isinstance(map_service_error(error), TransientServiceError)

    def test_bad_request_is_permanent(self):
        """Test 400 responses are not retried."""
        error = errors.ClientError(400, {"error": {"message": "bad schema"}})
        mapped = map_service_error(error)
        assert isinstance(mapped, ModelServiceError)
        assert not isinstance(mapped, TransientServiceError)

    def test_network_errors_are_transient(self):
        """Test timeouts and socket errors are retried."""
        assert isinstance(map_service_error(asyncio.TimeoutError()), TransientServiceError)
        assert isinstance(map_service_error(ConnectionResetError("reset")), TransientServiceError)


class TestChatSession:
    """Tests for chat request and reply translation."""

    async def test_text_reply(self):
        """Test a plain text reply."""
        chat = FakeChat(_response(types.Part(text=" Ahlan ")))
        reply = await GeminiChatSession(chat).send_user_turn(text="salam")

        assert reply.text == "Ahlan"
        assert not reply.has_function_calls
        assert chat.messages[0][0].text == "salam"

    async def test_function_call_reply(self):
        """Test function calls carry their id, name and arguments."""
        chat = FakeChat(_response(types.Part(function_call=types.FunctionCall(
            id="fc-1", name="setBudget", args={"amount": 3000},
        ))))

        reply = await GeminiChatSession(chat).send_user_turn(text="budget 3000")

        assert reply.function_calls[0].call_id == "fc-1"
        assert reply.function_calls[0].name == "setBudget"
        assert reply.function_calls[0].arguments == {"amount": 3000}

    async def test_tool_results_sent_as_function_responses(self):
        """Test all results go out in one message, with ids preserved."""
        chat = FakeChat(_response(types.Part(text="Safi")))
        results = [
            ToolResult(call_id="a", name="getExpenses", payload={"expenses": []}),
            ToolResult(call_id="b", name="updateExpense", error="Expense not found"),
        ]

        await GeminiChatSession(chat).send_tool_results(results)

        parts = chat.messages[0]
        assert [p.function_response.id for p in parts] == ["a", "b"]
        assert parts[1].function_response.response == {"error": "Expense not found"}

    async def test_sdk_errors_are_mapped(self):
        """Test SDK failures surface as model service errors."""
        chat = FakeChat(error=errors.ServerError(500, {"error": {"message": "boom"}}))
        with pytest.raises(TransientServiceError):
            await GeminiChatSession(chat).send_user_turn(text="salam")


class TestLiveChannel:
    """Tests for live message translation."""

    async def test_events_from_messages(self):
        """Test audio, interruptions and tool calls are translated in order."""
        audio = types.LiveServerMessage(server_content=types.LiveServerContent(
            model_turn=types.Content(parts=[types.Part(
                inline_data=types.Blob(data=b"\x01\x02", mime_type="audio/pcm;rate=24000"),
            )]),
        ))
        interrupted = types.LiveServerMessage(
            server_content=types.LiveServerContent(interrupted=True),
        )
        tool_call = types.LiveServerMessage(tool_call=types.LiveServerToolCall(
            function_calls=[types.FunctionCall(id="t1", name="getAppointments", args={})],
        ))
        session = FakeLiveSession([[audio, interrupted], [tool_call]])
        channel = GeminiLiveChannel(FakeLiveContext(), session, 16000)

        events = []
        async for event in channel.receive():
            events.append(event)
            if len(events) == 3:
                break

        assert isinstance(events[0], LiveAudioFrame)
        assert events[0].data == b"\x01\x02"
        assert isinstance(events[1], LiveInterruption)
        assert isinstance(events[2], LiveToolCall)
        assert events[2].calls[0].call_id == "t1"

    async def test_send_audio_mime_type(self):
        """Test microphone audio is tagged with the input rate."""
        session = FakeLiveSession([])
        channel = GeminiLiveChannel(FakeLiveContext(), session, 16000)

        await channel.send_audio(b"\x00\x00")

        assert session.audio[0].mime_type == "audio/pcm;rate=16000"

    async def test_close_exits_once(self):
        """Test close exits the SDK context and silences later sends."""
        context = FakeLiveContext()
        session = FakeLiveSession([])
        channel = GeminiLiveChannel(context, session, 16000)

        await channel.close()
        await channel.close()
        await channel.send_audio(b"\x00\x00")

        assert context.exited
        assert session.audio == []
