#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "aiohttp>=3.9.0",
#     "pydantic>=2.5.0",
# ]
# ///

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from analysis import analyze_conversation
from config import AppConfig, ConfigError, get_upstream_config
from errors import BadRequest, RateLimited, UpstreamFailure, error_for_status
from models import SupportAnalysis
from prompts import ESCALATION_NOTE, AgentType, get_system_prompt

logger = logging.getLogger(__name__)

EVENT_STREAM_CONTENT_TYPE = "text/event-stream"
RELAYED_ROLES = ("user", "assistant")


class CompletionRelay:
    """Forwards a conversation to the upstream completion API and relays the stream back"""

    def __init__(
        self,
        gateway_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 30,
        max_retries: int = 0,
        retry_base_delay: float = 1.0,
        max_message_length: Optional[int] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if not gateway_url:
            raise ConfigError("gateway_url is required")
        if not api_key:
            raise ConfigError("api_key is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.max_message_length = max_message_length
        self.session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: AppConfig) -> "CompletionRelay":
        upstream = get_upstream_config(config)
        return cls(
            gateway_url=upstream["url"],
            api_key=upstream["api_key"],
            model=upstream["model"],
            timeout=upstream["timeout"],
            max_retries=upstream["max_retries"],
            retry_base_delay=upstream["retry_base_delay"],
            max_message_length=config.max_message_length,
        )

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True
        return self.session

    async def close(self):
        """Close the aiohttp session if this relay created it"""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _get_auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    # ========== REQUEST BUILDING ==========

    def validate(self, messages: Any, agent_type: Any) -> List[Dict[str, str]]:
        """Check the inbound request; raises BadRequest before any network call"""
        if not isinstance(agent_type, str):
            raise BadRequest("agentType is required")
        if not isinstance(messages, list) or not messages:
            raise BadRequest("messages must be a non-empty list")

        cleaned = []
        for index, message in enumerate(messages):
            if not isinstance(message, dict):
                raise BadRequest(f"messages[{index}] must be an object")
            role = message.get("role")
            content = message.get("content")
            if role not in RELAYED_ROLES:
                raise BadRequest(f"messages[{index}].role must be 'user' or 'assistant'")
            if not isinstance(content, str):
                raise BadRequest(f"messages[{index}].content must be a string")
            cleaned.append({"role": role, "content": content})

        # only the newest user turn is limited; earlier turns and replies pass as-is
        newest = cleaned[-1]
        if self.max_message_length and newest["role"] == "user" and len(newest["content"]) > self.max_message_length:
            raise BadRequest(f"Message exceeds {self.max_message_length} characters")
        return cleaned

    def build_messages(
        self,
        messages: List[Dict[str, str]],
        agent_type: str,
        analysis: Optional[SupportAnalysis] = None,
    ) -> List[Dict[str, str]]:
        """Prepend the agent's system prompt to the conversation"""
        system_prompt = get_system_prompt(agent_type)
        if analysis is not None and analysis.should_escalate:
            system_prompt += ESCALATION_NOTE.format(reason=analysis.escalation_reason)
        return [{"role": "system", "content": system_prompt}, *messages]

    # ========== STREAMING ==========

    async def open_stream(
        self,
        messages: List[Dict[str, str]],
        agent_type: str,
        include_analysis: bool = False,
    ) -> AsyncIterator[bytes]:
        """Start an upstream completion and return its body as an async byte iterator.

        Raises a RelayError before returning when the request is invalid or the
        upstream rejects it; once the iterator is returned the status was 2xx.
        """
        cleaned = self.validate(messages, agent_type)

        analysis = None
        if AgentType.parse(agent_type) is AgentType.SUPPORT:
            analysis = analyze_conversation(cleaned)

        logger.info(
            f"Processing chat for agent: {agent_type}"
            + (f" Analysis: {analysis.model_dump_json(by_alias=True)}" if analysis else "")
        )

        payload = {
            "model": self.model,
            "messages": self.build_messages(cleaned, agent_type, analysis),
            "stream": True,
        }
        response = await self._post_with_retry(payload)

        preamble = b""
        if analysis is not None and include_analysis:
            preamble = f"data: {json.dumps(analysis.to_event())}\n\n".encode("utf-8")

        return self._relay_body(response, preamble)

    async def _post_with_retry(self, payload: Dict[str, Any]) -> aiohttp.ClientResponse:
        """POST to the gateway; only RateLimited is retried, with exponential backoff"""
        attempt = 0
        while True:
            try:
                return await self._post(payload)
            except RateLimited:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_base_delay * (2 ** attempt)
                attempt += 1
                logger.warning(f"Rate limited by AI gateway, retry {attempt}/{self.max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)

    async def _post(self, payload: Dict[str, Any]) -> aiohttp.ClientResponse:
        session = await self.get_session()
        try:
            response = await session.post(
                self.gateway_url,
                json=payload,
                headers=self._get_auth_headers(),
                timeout=aiohttp.ClientTimeout(total=None, connect=self.timeout),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"AI gateway connection error: {e}")
            raise UpstreamFailure() from e

        if 200 <= response.status < 300:
            return response

        async with response:
            error_text = await response.text()
        logger.error(f"AI gateway error: {response.status} {error_text}")

        if response.status in (402, 429):
            raise error_for_status(response.status)
        raise UpstreamFailure(upstream_status=response.status)

    async def _relay_body(self, response: aiohttp.ClientResponse, preamble: bytes) -> AsyncIterator[bytes]:
        """Pass the upstream body through unmodified"""
        async with response:
            if preamble:
                yield preamble
            async for chunk in response.content.iter_any():
                yield chunk
