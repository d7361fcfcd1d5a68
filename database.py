#!/usr/bin/env python3
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "aiosqlite>=0.19.0",
# ]
# ///

import aiosqlite
import uuid
from datetime import datetime
from typing import List, Dict, Any, Optional
import logging

from models import Message

logger = logging.getLogger(__name__)

class SimpleDatabaseService:
    """Chat sessions and their transcripts"""

    def __init__(self, db_path: str = "agent_chat.db"):
        self.db_path = db_path

    async def initialize(self):
        """Create the session and message tables"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS chat_sessions (
                    id TEXT PRIMARY KEY,
                    agent_type TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # seq keeps transcript insertion order independent of timestamps
            await db.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    session_id TEXT NOT NULL,
                    role TEXT NOT NULL,  -- 'user' or 'assistant'
                    content TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (session_id) REFERENCES chat_sessions(id)
                )
            """)

            await db.commit()
            logger.info("Chat database initialized")

    # ========== SESSION OPERATIONS ==========

    async def create_session(self, agent_type: str) -> Dict[str, Any]:
        """Create a new chat session"""
        session_id = str(uuid.uuid4())
        now = datetime.now().isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO chat_sessions (id, agent_type, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (session_id, agent_type, now, now)
            )
            await db.commit()

        return {
            "id": session_id,
            "agent_type": agent_type,
            "created_at": now,
            "updated_at": now
        }

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a session by ID"""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id, agent_type, created_at, updated_at FROM chat_sessions WHERE id = ?",
                (session_id,)
            ) as cursor:
                row = await cursor.fetchone()
                if row:
                    return {
                        "id": row[0],
                        "agent_type": row[1],
                        "created_at": row[2],
                        "updated_at": row[3]
                    }
        return None

    async def get_all_sessions(self) -> List[Dict[str, Any]]:
        """Get all chat sessions, newest first"""
        sessions = []
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT id, agent_type, created_at, updated_at FROM chat_sessions ORDER BY updated_at DESC"
            ) as cursor:
                async for row in cursor:
                    sessions.append({
                        "id": row[0],
                        "agent_type": row[1],
                        "created_at": row[2],
                        "updated_at": row[3]
                    })
        return sessions

    async def update_session_timestamp(self, session_id: str):
        """Update session's last activity timestamp"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                (datetime.now().isoformat(), session_id)
            )
            await db.commit()

    async def delete_session(self, session_id: str):
        """Delete a session and all its messages"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM chat_messages WHERE session_id = ?", (session_id,))
            await db.execute("DELETE FROM chat_sessions WHERE id = ?", (session_id,))
            await db.commit()

    # ========== MESSAGE OPERATIONS ==========

    async def add_message(self, session_id: str, message: Message) -> Dict[str, Any]:
        """Append a transcript message to a session"""
        created_at = message.timestamp.isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "INSERT INTO chat_messages (id, session_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
                (message.id, session_id, message.role, message.content, created_at)
            )
            await db.commit()

        await self.update_session_timestamp(session_id)

        return {
            "id": message.id,
            "session_id": session_id,
            "role": message.role,
            "content": message.content,
            "created_at": created_at
        }

    async def get_messages(self, session_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Get the most recent messages for a session, oldest first"""
        messages = []
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                """SELECT id, role, content, created_at
                   FROM chat_messages
                   WHERE session_id = ?
                   ORDER BY seq DESC
                   LIMIT ?""",
                (session_id, limit)
            ) as cursor:
                async for row in cursor:
                    messages.append({
                        "id": row[0],
                        "role": row[1],
                        "content": row[2],
                        "created_at": row[3]
                    })

        # Return in chronological order
        return list(reversed(messages))

    async def load_transcript(self, session_id: str) -> List[Message]:
        """Load a session's whole transcript, oldest first"""
        transcript = []
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                """SELECT id, role, content, created_at
                   FROM chat_messages
                   WHERE session_id = ?
                   ORDER BY seq ASC""",
                (session_id,)
            ) as cursor:
                async for row in cursor:
                    transcript.append(Message(id=row[0], role=row[1], content=row[2],
                                              timestamp=datetime.fromisoformat(row[3])))
        return transcript

    async def update_message_content(self, message_id: str, content: str):
        """Update a message's content (for streaming)"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                "UPDATE chat_messages SET content = ? WHERE id = ?",
                (content, message_id)
            )
            await db.commit()

    async def delete_message(self, message_id: str):
        """Remove a message (placeholder rollback)"""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM chat_messages WHERE id = ?", (message_id,))
            await db.commit()
