#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pydantic>=2.5.0",
# ]
# ///

import uuid
from datetime import datetime
from typing import Optional, Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

# ========== RELAY REQUEST MODELS ==========

class RelayMessage(BaseModel):
    """Role-tagged message as sent to the relay"""
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Body of POST /chat"""
    model_config = ConfigDict(populate_by_name=True)

    messages: List[RelayMessage] = Field(min_length=1)
    agent_type: str = Field(alias="agentType")
    include_analysis: bool = Field(default=False, alias="includeAnalysis")


class ErrorResponse(BaseModel):
    """Error body returned by the relay"""
    error: str

# ========== TRANSCRIPT MODELS ==========

class Message(BaseModel):
    """Transcript entry; only the newest assistant message is ever mutated"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)

    def to_relay(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class SupportAnalysis(BaseModel):
    """Sentiment and escalation result for a support conversation"""
    sentiment: Literal["positive", "negative", "neutral"]
    confidence: int
    should_escalate: bool = Field(alias="shouldEscalate")
    escalation_reason: str = Field(default="", alias="escalationReason")

    model_config = ConfigDict(populate_by_name=True)

    def to_event(self) -> Dict[str, Any]:
        return {"type": "analysis", **self.model_dump(by_alias=True)}

# ========== SESSION MODELS ==========

class CreateSessionRequest(BaseModel):
    """Request to create a new chat session"""
    agent_type: str = Field(alias="agentType")

    model_config = ConfigDict(populate_by_name=True)


class WSMessage(BaseModel):
    """WebSocket message format"""
    type: str  # 'user_message', 'ai_chunk', 'ai_complete', 'analysis', 'typing', 'error', ...
    payload: Dict[str, Any]
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class ApiResponse(BaseModel):
    """Standard API response wrapper"""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
