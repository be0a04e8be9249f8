"""
Gemini Model Service

google-genai implementation of the three model capabilities.

Error mapping:
- 5xx, 429, timeouts and dropped connections -> TransientServiceError
- everything else (bad request, auth, safety blocks) -> ModelServiceError
"""

import asyncio
from typing import Any, AsyncIterator, Optional

import structlog
from google import genai
from google.genai import errors, types

from expense_assistant.config import get_settings
from expense_assistant.models.conversation import AudioClip, ToolCall, ToolResult
from expense_assistant.services.genai.interface import (
    ChatSession,
    LiveAudioFrame,
    LiveChannel,
    LiveEvent,
    LiveInterruption,
    LiveToolCall,
    ModelReply,
    ModelService,
    ModelServiceError,
    TransientServiceError,
)


logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def map_service_error(error: Exception) -> ModelServiceError:
    """Classify an SDK exception as transient or permanent."""
    if isinstance(error, ModelServiceError):
        return error
    if isinstance(error, errors.ServerError):
        return TransientServiceError(str(error))
    if isinstance(error, errors.APIError) and error.code in RETRYABLE_STATUS_CODES:
        return TransientServiceError(str(error))
    if isinstance(error, (asyncio.TimeoutError, OSError)):
        return TransientServiceError(str(error) or type(error).__name__)
    return ModelServiceError(str(error))


def _to_tool_calls(function_calls: Optional[list[types.FunctionCall]]) -> list[ToolCall]:
    return [
        ToolCall(call_id=fc.id, name=fc.name or "", arguments=dict(fc.args or {}))
        for fc in function_calls or []
    ]


def _to_function_responses(results: list[ToolResult]) -> list[types.FunctionResponse]:
    return [
        types.FunctionResponse(id=r.call_id, name=r.name, response=r.response())
        for r in results
    ]


def _to_reply(response: types.GenerateContentResponse) -> ModelReply:
    function_calls = _to_tool_calls(response.function_calls)
    text = None
    # .text concatenates text parts and is None when there are none
    if response.candidates:
        text = response.text
    return ModelReply(text=text.strip() if text else None, function_calls=function_calls)


class GeminiChatSession(ChatSession):
    """Wraps a google-genai async chat."""

    def __init__(self, chat: Any):
        self._chat = chat

    async def _send(self, message: Any) -> ModelReply:
        try:
            response = await self._chat.send_message(message)
        except Exception as e:
            raise map_service_error(e) from e
        return _to_reply(response)

    async def send_user_turn(
        self,
        text: Optional[str] = None,
        audio: Optional[AudioClip] = None,
    ) -> ModelReply:
        parts: list[types.Part] = []
        if audio is not None:
            parts.append(types.Part.from_bytes(data=audio.data, mime_type=audio.mime_type))
        if text:
            parts.append(types.Part.from_text(text=text))
        return await self._send(parts)

    async def send_tool_results(self, results: list[ToolResult]) -> ModelReply:
        parts = [
            types.Part(function_response=fr)
            for fr in _to_function_responses(results)
        ]
        return await self._send(parts)


class GeminiLiveChannel(LiveChannel):
    """
    Wraps a google-genai live session.

    The SDK's receive() iterator ends after each turn_complete, so the
    channel re-enters it until closed.
    """

    def __init__(self, context: Any, session: Any, input_sample_rate: int):
        self._context = context
        self._session = session
        self._mime_type = f"audio/pcm;rate={input_sample_rate}"
        self._closed = False

    async def send_audio(self, pcm: bytes) -> None:
        if self._closed:
            return
        try:
            await self._session.send_realtime_input(
                audio=types.Blob(data=pcm, mime_type=self._mime_type)
            )
        except Exception as e:
            raise map_service_error(e) from e

    async def send_tool_results(self, results: list[ToolResult]) -> None:
        if self._closed:
            return
        try:
            await self._session.send_tool_response(
                function_responses=_to_function_responses(results)
            )
        except Exception as e:
            raise map_service_error(e) from e

    async def receive(self) -> AsyncIterator[LiveEvent]:
        while not self._closed:
            try:
                async for message in self._session.receive():
                    for event in self._to_events(message):
                        yield event
            except Exception as e:
                if self._closed:
                    return
                raise map_service_error(e) from e

    def _to_events(self, message: types.LiveServerMessage) -> list[LiveEvent]:
        events: list[LiveEvent] = []
        content = message.server_content
        if content is not None:
            if content.interrupted:
                events.append(LiveInterruption())
            if content.model_turn and content.model_turn.parts:
                for part in content.model_turn.parts:
                    if part.inline_data and part.inline_data.data:
                        events.append(LiveAudioFrame(data=part.inline_data.data))
        if message.tool_call is not None:
            calls = _to_tool_calls(message.tool_call.function_calls)
            if calls:
                events.append(LiveToolCall(calls=calls))
        return events

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._context.__aexit__(None, None, None)


class GeminiModelService(ModelService):
    """
    Gemini implementation of the model service.

    Uses:
    - chat_model for typed and recorded turns
    - tts_model for spoken replies
    - live_model for the realtime voice session
    """

    def __init__(self, client: Optional[genai.Client] = None):
        settings = get_settings()
        self._settings = settings.gemini
        self._live_audio = settings.live_audio
        self._client = client or genai.Client(api_key=self._settings.api_key)

    def _tools(self, tool_declarations: list[dict]) -> list[types.Tool]:
        return [types.Tool(function_declarations=[
            types.FunctionDeclaration(**declaration)
            for declaration in tool_declarations
        ])]

    def _speech_config(self) -> types.SpeechConfig:
        return types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(
                    voice_name=self._settings.voice_name,
                )
            )
        )

    def start_chat(
        self,
        system_prompt: str,
        tool_declarations: list[dict],
    ) -> ChatSession:
        chat = self._client.aio.chats.create(
            model=self._settings.chat_model,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=self._settings.temperature,
                tools=self._tools(tool_declarations),
                # Tool calls are resolved by the dispatcher, not the SDK
                automatic_function_calling=types.AutomaticFunctionCallingConfig(
                    disable=True,
                ),
            ),
        )
        return GeminiChatSession(chat)

    async def synthesize_speech(self, text: str) -> bytes:
        try:
            response = await self._client.aio.models.generate_content(
                model=self._settings.tts_model,
                contents=text,
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=self._speech_config(),
                ),
            )
        except Exception as e:
            raise map_service_error(e) from e

        try:
            data = response.candidates[0].content.parts[0].inline_data.data
        except (AttributeError, IndexError, TypeError):
            data = None
        if not data:
            raise ModelServiceError("No audio in speech response")
        return data

    async def connect_live(
        self,
        system_prompt: str,
        tool_declarations: list[dict],
    ) -> LiveChannel:
        config = types.LiveConnectConfig(
            response_modalities=["AUDIO"],
            system_instruction=types.Content(parts=[types.Part(text=system_prompt)]),
            tools=self._tools(tool_declarations),
            speech_config=self._speech_config(),
        )
        context = self._client.aio.live.connect(
            model=self._settings.live_model,
            config=config,
        )
        try:
            session = await context.__aenter__()
        except Exception as e:
            logger.error("live_connect_failed", error=str(e))
            raise map_service_error(e) from e

        return GeminiLiveChannel(context, session, self._live_audio.input_sample_rate)
