"""
Chat Store

Persistence for sessions, messages, user facts and agent records.

- InMemoryChatStore: process-local, used in development and tests
- SupabaseChatStore: Supabase tables over the PostgREST API
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..common.errors import UpstreamError
from .models import ChatMessage, ChatSession, UserFact, utc_now

logger = logging.getLogger("eaa_assistant.memory.store")

SESSIONS_TABLE = "chat_sessions"
MESSAGES_TABLE = "chat_messages"
FACTS_TABLE = "user_facts"


class ChatStore(ABC):
    """Interface shared by the store backends."""

    @abstractmethod
    async def create_session(self, session_id: str, user_id: str, title: Optional[str] = None) -> ChatSession:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        pass

    async def session_exists(self, session_id: str) -> bool:
        return await self.get_session(session_id) is not None

    @abstractmethod
    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        """Sessions of a user, most recent activity first."""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns False if absent."""
        pass

    @abstractmethod
    async def touch_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def save_message(self, message: ChatMessage) -> ChatMessage:
        pass

    @abstractmethod
    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Messages ordered by created_at ascending; limit keeps the newest."""
        pass

    @abstractmethod
    async def save_user_fact(self, fact: UserFact) -> UserFact:
        """Upsert on (user_id, fact_type)."""
        pass

    @abstractmethod
    async def get_user_facts(self, user_id: str) -> List[UserFact]:
        """Facts ordered by updated_at descending."""
        pass

    @abstractmethod
    async def save_record(self, table: str, row: Dict[str, Any]) -> None:
        """Append an agent record (frustration analysis, email draft)."""
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryChatStore(ChatStore):
    """Dict-backed store guarded by an asyncio lock."""

    def __init__(self):
        self._sessions: Dict[str, ChatSession] = {}
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._facts: Dict[tuple, UserFact] = {}
        self._records: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, session_id: str, user_id: str, title: Optional[str] = None) -> ChatSession:
        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing:
                return copy.deepcopy(existing)
            session = ChatSession(id=session_id, user_id=user_id, title=title)
            self._sessions[session_id] = session
            self._messages.setdefault(session_id, [])
            return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        async with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        async with self._lock:
            sessions = [copy.deepcopy(s) for s in self._sessions.values() if s.user_id == user_id]
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    async def delete_session(self, session_id: str) -> bool:
        async with self._lock:
            if session_id not in self._sessions:
                return False
            del self._sessions[session_id]
            self._messages.pop(session_id, None)
            return True

    async def touch_session(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session:
                now = utc_now()
                session.last_activity = now
                session.updated_at = now

    async def save_message(self, message: ChatMessage) -> ChatMessage:
        async with self._lock:
            self._messages.setdefault(message.session_id, []).append(copy.deepcopy(message))
        return message

    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        async with self._lock:
            messages = [copy.deepcopy(m) for m in self._messages.get(session_id, [])]
        messages.sort(key=lambda m: m.created_at)
        if limit:
            messages = messages[-limit:]
        return messages

    async def save_user_fact(self, fact: UserFact) -> UserFact:
        async with self._lock:
            key = (fact.user_id, fact.fact_type)
            existing = self._facts.get(key)
            stored = copy.deepcopy(fact)
            if existing:
                stored.created_at = existing.created_at
                stored.updated_at = utc_now()
            self._facts[key] = stored
            return copy.deepcopy(stored)

    async def get_user_facts(self, user_id: str) -> List[UserFact]:
        async with self._lock:
            facts = [copy.deepcopy(f) for (uid, _), f in self._facts.items() if uid == user_id]
        facts.sort(key=lambda f: f.updated_at, reverse=True)
        return facts

    async def save_record(self, table: str, row: Dict[str, Any]) -> None:
        async with self._lock:
            self._records.setdefault(table, []).append(copy.deepcopy(row))

    def records(self, table: str) -> List[Dict[str, Any]]:
        return list(self._records.get(table, []))


class SupabaseChatStore(ChatStore):
    """
    Supabase-backed store using PostgREST.

    Tables: chat_sessions, chat_messages, user_facts, plus free-form agent
    tables written through save_record().
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self._base = f"{url.rstrip('/')}/rest/v1"
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._http.request(
                method, f"{self._base}/{table}", params=params, json=json, headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning("Supabase %s %s failed: %s", method, table, e)
            raise UpstreamError("store", str(e)) from e

        if response.status_code >= 400:
            logger.warning("Supabase %s %s returned %d: %s", method, table, response.status_code, response.text[:200])
            raise UpstreamError("store", f"{table}: HTTP {response.status_code}")
        if not response.content:
            return []
        return response.json()

    async def create_session(self, session_id: str, user_id: str, title: Optional[str] = None) -> ChatSession:
        session = ChatSession(id=session_id, user_id=user_id, title=title)
        rows = await self._request(
            "POST", SESSIONS_TABLE,
            params={"on_conflict": "id"},
            json=session.to_dict(),
            prefer="resolution=ignore-duplicates,return=representation",
        )
        if rows:
            return ChatSession.from_row(rows[0])
        existing = await self.get_session(session_id)
        return existing or session

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        rows = await self._request("GET", SESSIONS_TABLE, params={"id": f"eq.{session_id}", "limit": "1"})
        return ChatSession.from_row(rows[0]) if rows else None

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        rows = await self._request(
            "GET", SESSIONS_TABLE,
            params={"user_id": f"eq.{user_id}", "order": "last_activity.desc"},
        )
        return [ChatSession.from_row(r) for r in rows]

    async def delete_session(self, session_id: str) -> bool:
        await self._request("DELETE", MESSAGES_TABLE, params={"session_id": f"eq.{session_id}"})
        rows = await self._request(
            "DELETE", SESSIONS_TABLE,
            params={"id": f"eq.{session_id}"},
            prefer="return=representation",
        )
        return bool(rows)

    async def touch_session(self, session_id: str) -> None:
        now = utc_now()
        await self._request(
            "PATCH", SESSIONS_TABLE,
            params={"id": f"eq.{session_id}"},
            json={"last_activity": now, "updated_at": now},
        )

    async def save_message(self, message: ChatMessage) -> ChatMessage:
        rows = await self._request(
            "POST", MESSAGES_TABLE, json=message.to_dict(), prefer="return=representation",
        )
        return ChatMessage.from_row(rows[0]) if rows else message

    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        params = {"session_id": f"eq.{session_id}", "order": "created_at.asc"}
        rows = await self._request("GET", MESSAGES_TABLE, params=params)
        messages = [ChatMessage.from_row(r) for r in rows]
        if limit:
            messages = messages[-limit:]
        return messages

    async def save_user_fact(self, fact: UserFact) -> UserFact:
        row = fact.to_dict()
        row.pop("created_at", None)
        row["updated_at"] = utc_now()
        rows = await self._request(
            "POST", FACTS_TABLE,
            params={"on_conflict": "user_id,fact_type"},
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return UserFact.from_row(rows[0]) if rows else fact

    async def get_user_facts(self, user_id: str) -> List[UserFact]:
        rows = await self._request(
            "GET", FACTS_TABLE,
            params={"user_id": f"eq.{user_id}", "order": "updated_at.desc"},
        )
        return [UserFact.from_row(r) for r in rows]

    async def save_record(self, table: str, row: Dict[str, Any]) -> None:
        await self._request("POST", table, json=row, prefer="return=minimal")

    async def ping(self) -> bool:
        try:
            await self._request("GET", SESSIONS_TABLE, params={"select": "id", "limit": "1"})
            return True
        except UpstreamError:
            return False

    async def close(self) -> None:
        if self._owns_client:
            await self._http.aclose()
