#!/usr/bin/env python3

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from errors import RelayError, UpstreamFailure
from event_stream import EventStreamDecoder, StreamEvent
from models import Message, SupportAnalysis
from prompts import AgentType

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Awaitable[None]]
UpdateCallback = Callable[[Message, str], Awaitable[None]]
ErrorCallback = Callable[[RelayError], Awaitable[None]]
AnalysisCallback = Callable[[SupportAnalysis], Awaitable[None]]


class ChatTransport(Protocol):
    """Anything that can open a relay stream: the in-process relay or a remote client"""

    async def open_stream(
        self,
        messages: List[Dict[str, str]],
        agent_type: str,
        include_analysis: bool = False,
    ) -> AsyncIterator[bytes]:
        ...

    async def close(self):
        ...


class ConversationState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    ERROR = "error"


class Conversation:
    """Owns one transcript and rebuilds assistant replies from a relay stream.

    At most one request is in flight; a second send while streaming is
    rejected. Fragments are appended to the newest assistant message in the
    order they arrive. On failure the error callback fires and the assistant
    placeholder is dropped if it never received content.
    """

    def __init__(
        self,
        transport: ChatTransport,
        agent_type: Union[AgentType, str],
        initial_message: Optional[str] = None,
        on_message: Optional[MessageCallback] = None,
        on_update: Optional[UpdateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_analysis: Optional[AnalysisCallback] = None,
        idle_timeout: Optional[float] = None,
        include_analysis: bool = False,
        transcript: Optional[List[Message]] = None,
    ):
        self.transport = transport
        self.agent_type = agent_type.value if isinstance(agent_type, AgentType) else agent_type
        self.on_message = on_message
        self.on_update = on_update
        self.on_error = on_error
        self.on_analysis = on_analysis
        self.idle_timeout = idle_timeout
        self.include_analysis = include_analysis

        self.transcript: List[Message] = list(transcript or [])
        if initial_message and not self.transcript:
            self.transcript.append(Message(role="assistant", content=initial_message))

        self.state = ConversationState.IDLE
        self.last_error: Optional[RelayError] = None
        self.analysis: Optional[SupportAnalysis] = None
        self._in_flight = False
        self._cancelled = False

    @property
    def is_loading(self) -> bool:
        return self._in_flight

    def history(self) -> List[Dict[str, str]]:
        return [message.to_relay() for message in self.transcript]

    def cancel(self):
        """Stop the in-flight stream at the next chunk boundary"""
        if self._in_flight:
            self._cancelled = True

    async def add_quick_action(self, action: str) -> bool:
        return await self.send_message(action)

    async def send_message(self, content: str) -> bool:
        """Submit a user message and stream the reply; False if rejected or failed"""
        if not content.strip() or self._in_flight:
            return False

        self._in_flight = True
        self._cancelled = False
        self.state = ConversationState.STREAMING
        assistant: Optional[Message] = None
        try:
            await self._append(Message(role="user", content=content))
            stream = await self.transport.open_stream(
                self.history(), self.agent_type, include_analysis=self.include_analysis
            )
            assistant = Message(role="assistant")
            await self._append(assistant)
            await self._consume(stream, assistant)
            self.state = ConversationState.IDLE
            return True
        except asyncio.TimeoutError:
            await self._fail(UpstreamFailure(f"No response received for {self.idle_timeout}s"), assistant)
            return False
        except RelayError as e:
            await self._fail(e, assistant)
            return False
        except Exception as e:
            await self._fail(UpstreamFailure(str(e) or "Failed to get response"), assistant)
            return False
        finally:
            self._in_flight = False

    async def _append(self, message: Message):
        self.transcript.append(message)
        if self.on_message:
            await self.on_message(message)

    async def _consume(self, stream: AsyncIterator[bytes], assistant: Message):
        decoder = EventStreamDecoder()
        iterator = stream.__aiter__()
        try:
            while not self._cancelled:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.idle_timeout)
                except StopAsyncIteration:
                    break
                await self._apply(decoder.feed(chunk), assistant)

            if self._cancelled:
                logger.info("Stream cancelled by caller")
            else:
                await self._apply(decoder.flush(), assistant)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        if decoder.skipped_lines:
            logger.warning(f"Skipped {decoder.skipped_lines} malformed stream lines")

    async def _apply(self, events: List[StreamEvent], assistant: Message):
        for event in events:
            if event.kind == "content":
                assistant.content += event.content
                if self.on_update:
                    await self.on_update(assistant, event.content)
            elif event.kind == "analysis":
                self.analysis = SupportAnalysis.model_validate(event.payload)
                if self.on_analysis:
                    await self.on_analysis(self.analysis)
            elif event.kind == "done":
                logger.debug("Received end-of-stream marker")

    async def _fail(self, error: RelayError, assistant: Optional[Message]):
        self.state = ConversationState.ERROR
        self.last_error = error
        logger.error(f"Chat error: {error.message}")

        if assistant is not None and not assistant.content:
            self.transcript = [m for m in self.transcript if m is not assistant]

        try:
            if self.on_error:
                await self.on_error(error)
        finally:
            self.state = ConversationState.IDLE
