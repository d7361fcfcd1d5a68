#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "aiohttp>=3.9.0",
# ]
# ///

import asyncio
import json
import logging
from typing import AsyncIterator, Dict, List, Optional

import aiohttp

from errors import UpstreamFailure, error_for_status

logger = logging.getLogger(__name__)


class RelayClient:
    """Talks to a running relay's POST /chat endpoint"""

    def __init__(self, chat_url: str, api_token: Optional[str] = None, connect_timeout: float = 10):
        if not chat_url:
            raise ValueError("chat_url is required")

        self.chat_url = chat_url
        self.api_token = api_token
        self.connect_timeout = connect_timeout
        self.session = None

    async def get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self.session

    async def close(self):
        """Close the aiohttp session"""
        if self.session:
            await self.session.close()
            self.session = None

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def open_stream(
        self,
        messages: List[Dict[str, str]],
        agent_type: str,
        include_analysis: bool = False,
    ) -> AsyncIterator[bytes]:
        """POST the conversation and return the event-stream body"""
        session = await self.get_session()
        payload = {"messages": messages, "agentType": agent_type}
        if include_analysis:
            payload["includeAnalysis"] = True

        try:
            response = await session.post(
                self.chat_url,
                json=payload,
                headers=self._get_headers(),
                timeout=aiohttp.ClientTimeout(total=None, connect=self.connect_timeout),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Unable to reach relay at {self.chat_url}: {e}")
            raise UpstreamFailure("Unable to connect to AI agent. Please try again.") from e

        if response.status != 200:
            async with response:
                body = await response.text()
            raise error_for_status(response.status, self._error_message(body, response.status))

        return self._read_body(response)

    @staticmethod
    def _error_message(body: str, status: int) -> str:
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"Request failed with status {status}"

    async def _read_body(self, response: aiohttp.ClientResponse) -> AsyncIterator[bytes]:
        async with response:
            async for chunk in response.content.iter_any():
                yield chunk
