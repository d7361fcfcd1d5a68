#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "fastapi>=0.104.1",
#     "uvicorn[standard]>=0.24.0",
#     "websockets>=12.0",
#     "pydantic>=2.5.0",
#     "aiosqlite>=0.19.0",
#     "aiohttp>=3.9.0",
#     "python-dotenv>=1.0.0",
# ]
# ///

from dotenv import load_dotenv
load_dotenv()

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from config import AppConfig, get_config, validate_required_config
from conversation import ChatTransport, Conversation
from database import SimpleDatabaseService
from errors import BadRequest, RelayError
from models import (
    ApiResponse, ChatRequest, CreateSessionRequest, ErrorResponse, Message, SupportAnalysis, WSMessage
)
from prompts import AGENT_PROFILES, AgentType, get_agent_profile
from relay import EVENT_STREAM_CONTENT_TYPE, CompletionRelay

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ========== WEBSOCKET CONNECTION MANAGER ==========

class ConnectionManager:
    """Manages WebSocket connections and the live conversation of each session"""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.chats: Dict[str, "SessionChat"] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()
        if session_id not in self.active_connections:
            self.active_connections[session_id] = []
        self.active_connections[session_id].append(websocket)
        logger.info(f"WebSocket connected to session {session_id}")

    def disconnect(self, websocket: WebSocket, session_id: str):
        if session_id in self.active_connections:
            if websocket in self.active_connections[session_id]:
                self.active_connections[session_id].remove(websocket)
            if not self.active_connections[session_id]:
                del self.active_connections[session_id]
                # last socket gone: the session's conversation ends with it
                self.chats.pop(session_id, None)
        logger.info(f"WebSocket disconnected from session {session_id}")

    async def send_to_session(self, message: WSMessage, session_id: str):
        text = message.model_dump_json()
        for connection in list(self.active_connections.get(session_id, [])):
            try:
                await connection.send_text(text)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.info(f"Dropping closed WebSocket for session {session_id}: {e}")
                self.disconnect(connection, session_id)

# ========== LIVE SESSION CHAT ==========

class SessionChat:
    """Server-side conversation bound to one stored session"""

    def __init__(
        self,
        session_id: str,
        agent_type: str,
        transcript: List[Message],
        transport: ChatTransport,
        db: SimpleDatabaseService,
        manager: ConnectionManager,
        idle_timeout: Optional[float] = None,
    ):
        self.session_id = session_id
        self.db = db
        self.manager = manager
        self._assistant: Optional[Message] = None
        self._task: Optional[asyncio.Task] = None
        self.conversation = Conversation(
            transport,
            agent_type,
            transcript=transcript,
            on_message=self._on_message,
            on_update=self._on_update,
            on_error=self._on_error,
            on_analysis=self._on_analysis,
            idle_timeout=idle_timeout,
            include_analysis=AgentType.parse(agent_type) is AgentType.SUPPORT,
        )

    @property
    def is_busy(self) -> bool:
        return self.conversation.is_loading or (self._task is not None and not self._task.done())

    async def submit(self, content: str) -> Optional[asyncio.Task]:
        """Start a send in the background so the socket keeps reading; rejected while one runs"""
        if self.is_busy:
            await self._reject_busy()
            return None
        self._task = asyncio.create_task(self.send(content))
        self._task.add_done_callback(self._collect)
        return self._task

    def _collect(self, task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Send failed for session {self.session_id}: {error}")

    async def _reject_busy(self):
        await self._broadcast("error", {"error": "A response is already in progress", "kind": "busy"})

    async def send(self, content: str) -> bool:
        if self.conversation.is_loading:
            await self._reject_busy()
            return False

        self._assistant = None
        accepted = await self.conversation.send_message(content)

        assistant = self._assistant
        if assistant is not None:
            if any(m is assistant for m in self.conversation.transcript):
                await self.db.update_message_content(assistant.id, assistant.content)
                if accepted:
                    await self._broadcast("ai_complete", {"message_id": assistant.id, "content": assistant.content})
            else:
                await self.db.delete_message(assistant.id)
            await self._broadcast("typing", {"typing": False})
        return accepted

    async def _broadcast(self, frame_type: str, payload: Dict):
        await self.manager.send_to_session(WSMessage(type=frame_type, payload=payload), self.session_id)

    async def _on_message(self, message: Message):
        stored = await self.db.add_message(self.session_id, message)
        if message.role == "user":
            await self._broadcast("user_message", stored)
        else:
            self._assistant = message
            await self._broadcast("typing", {"typing": True, "message_id": message.id})

    async def _on_update(self, message: Message, fragment: str):
        await self._broadcast("ai_chunk", {"chunk": fragment, "message_id": message.id})

    async def _on_analysis(self, analysis: SupportAnalysis):
        await self._broadcast("analysis", analysis.model_dump(by_alias=True))

    async def _on_error(self, error: RelayError):
        await self._broadcast("error", {"error": error.message, "kind": error.kind, "retryable": error.retryable})

# ========== APP FACTORY ==========

def create_app(
    config: Optional[AppConfig] = None,
    relay: Optional[CompletionRelay] = None,
    db: Optional[SimpleDatabaseService] = None,
) -> FastAPI:
    """Build the application; a missing gateway key fails here, not per request"""
    config = config or get_config()
    if relay is None:
        validate_required_config(config)
        relay = CompletionRelay.from_config(config)
    db = db or SimpleDatabaseService(config.database_path)
    manager = ConnectionManager()
    chat_lock = asyncio.Lock()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger.info("Starting Agent Chat Relay")
        await db.initialize()

        yield

        # Shutdown
        logger.info("Shutting down")
        await relay.close()

    app = FastAPI(
        title="Agent Chat Relay",
        description="Streaming chat relay for secretary, support, social and lecturer agents",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.relay = relay
    app.state.db = db
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========== ERROR HANDLERS ==========

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
        else:
            message = BadRequest.default_message
        return JSONResponse(status_code=400, content=BadRequest(message).to_dict())

    # ========== RELAY ENDPOINT ==========

    @app.post("/chat", responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    })
    async def chat(body: ChatRequest):
        """Relay a conversation to the AI gateway and stream the reply back"""
        try:
            stream = await relay.open_stream(
                [message.model_dump() for message in body.messages],
                body.agent_type,
                include_analysis=body.include_analysis,
            )
        except RelayError:
            raise
        except Exception as e:
            logger.error(f"Chat function error: {e}")
            return JSONResponse(status_code=500, content={"error": str(e) or "Unknown error"})

        return StreamingResponse(stream, media_type=EVENT_STREAM_CONTENT_TYPE)

    # ========== SESSION ENDPOINTS ==========

    @app.post("/sessions", response_model=ApiResponse)
    async def create_session(request: CreateSessionRequest):
        """Create a new chat session seeded with the agent's greeting"""
        agent_type = AgentType.parse(request.agent_type)
        if agent_type is None:
            raise BadRequest(f"Unknown agent type: {request.agent_type}")

        profile = get_agent_profile(agent_type)
        session = await db.create_session(agent_type.value)
        greeting = await db.add_message(session["id"], Message(role="assistant", content=profile.greeting))

        return ApiResponse(
            success=True,
            data={
                "session": session,
                "agent": profile.to_dict(),
                "messages": [greeting],
                "websocket_url": f"/ws/{session['id']}"
            }
        )

    @app.get("/sessions", response_model=ApiResponse)
    async def get_sessions():
        """Get all chat sessions"""
        sessions = await db.get_all_sessions()

        # For each session, get first message for preview
        for session in sessions:
            messages = await db.get_messages(session["id"], limit=1)
            session["preview"] = messages[0]["content"][:100] if messages else "New chat"

        return ApiResponse(success=True, data={"sessions": sessions})

    @app.get("/sessions/{session_id}/messages", response_model=ApiResponse)
    async def get_messages(session_id: str, limit: int = 50):
        """Get messages for a session"""
        session = await db.get_session(session_id)
        if not session:
            return JSONResponse(status_code=404, content=ApiResponse(success=False, error="Session not found").model_dump())
        messages = await db.get_messages(session_id, limit)
        return ApiResponse(success=True, data={"messages": messages})

    @app.delete("/sessions/{session_id}", response_model=ApiResponse)
    async def delete_session(session_id: str):
        """Delete a session and its transcript"""
        await db.delete_session(session_id)
        manager.chats.pop(session_id, None)
        return ApiResponse(success=True, data={"deleted": session_id})

    # ========== AGENT ENDPOINTS ==========

    @app.get("/agents", response_model=ApiResponse)
    async def get_agents():
        """List the available agent types"""
        return ApiResponse(success=True, data={"agents": [p.to_dict() for p in AGENT_PROFILES.values()]})

    # ========== WEBSOCKET ENDPOINT ==========

    async def get_session_chat(session: Dict) -> SessionChat:
        session_id = session["id"]
        # one SessionChat per session even when sockets connect concurrently
        async with chat_lock:
            chat = manager.chats.get(session_id)
            if chat is None:
                transcript = await db.load_transcript(session_id)
                chat = SessionChat(
                    session_id,
                    session["agent_type"],
                    transcript,
                    transport=relay,
                    db=db,
                    manager=manager,
                    idle_timeout=config.stream_idle_timeout,
                )
                manager.chats[session_id] = chat
        return chat

    @app.websocket("/ws/{session_id}")
    async def websocket_endpoint(websocket: WebSocket, session_id: str):
        """WebSocket for real-time chat"""
        session = await db.get_session(session_id)
        if not session:
            await websocket.close(code=4004, reason="Session not found")
            return

        await manager.connect(websocket, session_id)
        try:
            chat = await get_session_chat(session)

            # Send message history
            history_msg = WSMessage(
                type="history",
                payload={"messages": [m.model_dump(mode="json") for m in chat.conversation.transcript]},
            )
            await websocket.send_text(history_msg.model_dump_json())

            # Message loop
            while True:
                data = await websocket.receive_text()
                try:
                    message_data = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_text(WSMessage(type="error", payload={"error": "Invalid JSON", "kind": "bad_request"}).model_dump_json())
                    continue

                message_type = message_data.get("type")
                payload = message_data.get("payload") or {}
                if message_type == "user_message":
                    await chat.submit(str(payload.get("content", "")))
                elif message_type == "quick_action":
                    await chat.submit(str(payload.get("action", "")))
                elif message_type == "ping":
                    await websocket.send_text(WSMessage(type="pong", payload={}).model_dump_json())

        except WebSocketDisconnect:
            manager.disconnect(websocket, session_id)
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            manager.disconnect(websocket, session_id)

    # ========== HEALTH CHECK ==========

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    return app


if __name__ == "__main__":
    import uvicorn
    config = get_config()
    uvicorn.run("app:create_app", factory=True, host=config.host, port=config.port)
