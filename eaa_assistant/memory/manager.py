"""
Chat Memory

Conversation-level operations on top of a ChatStore: saving question/answer
pairs, reading recent history, and assembling the memory context handed to
the answer composer.
"""

import logging
from typing import Any, Dict, List, Optional

from ..common.errors import NotFoundError
from .models import ChatMessage, ChatSession, MessageRole, UserFact
from .store import ChatStore

logger = logging.getLogger("eaa_assistant.memory.manager")

CONTEXT_MESSAGE_COUNT = 5
SESSION_TITLE_LENGTH = 60


class ChatMemory:
    """Session, message and fact access for the pipeline and the agents."""

    def __init__(self, store: ChatStore):
        self._store = store

    @property
    def store(self) -> ChatStore:
        return self._store

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def create_session(self, session_id: str, user_id: str, title: Optional[str] = None) -> ChatSession:
        return await self._store.create_session(session_id, user_id, title)

    async def session_exists(self, session_id: str) -> bool:
        return await self._store.session_exists(session_id)

    async def list_sessions(self, user_id: str) -> List[ChatSession]:
        return await self._store.list_sessions(user_id)

    async def delete_session(self, session_id: str) -> None:
        if not await self._store.delete_session(session_id):
            raise NotFoundError(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        logger.info("Deleted session %s", session_id)

    async def ensure_session(self, session_id: str, user_id: str, title: Optional[str] = None) -> ChatSession:
        session = await self._store.get_session(session_id)
        if session is None:
            session = await self._store.create_session(session_id, user_id, title)
            logger.info("Created session %s for user %s", session_id, user_id)
        return session

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def save_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        message = ChatMessage(session_id=session_id, role=role, content=content, metadata=metadata or {})
        saved = await self._store.save_message(message)
        await self._store.touch_session(session_id)
        return saved

    async def save_conversation_pair(
        self,
        session_id: str,
        user_id: str,
        question: str,
        answer: str,
        assistant_metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        """
        Persist a user question and the assistant answer.

        The session is created on first use, titled after the question.

        Returns:
            The saved user message (its id links extracted facts)
        """
        title = question.strip()[:SESSION_TITLE_LENGTH]
        await self.ensure_session(session_id, user_id, title=title)
        user_message = await self.save_message(session_id, MessageRole.USER, question)
        await self.save_message(session_id, MessageRole.ASSISTANT, answer, assistant_metadata)
        return user_message

    async def get_session_messages(self, session_id: str) -> List[ChatMessage]:
        if not await self._store.session_exists(session_id):
            raise NotFoundError(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        return await self._store.get_messages(session_id)

    async def get_recent_messages(self, session_id: str, limit: int = CONTEXT_MESSAGE_COUNT) -> List[ChatMessage]:
        return await self._store.get_messages(session_id, limit=limit)

    async def get_last_user_message(self, session_id: str) -> Optional[ChatMessage]:
        messages = await self._store.get_messages(session_id, limit=10)
        for message in reversed(messages):
            if message.role == MessageRole.USER:
                return message
        return None

    # -------------------------------------------------------------------------
    # Facts
    # -------------------------------------------------------------------------

    async def save_user_fact(
        self,
        user_id: str,
        fact_type: str,
        fact_value: str,
        confidence: float = 1.0,
        source_message_id: Optional[str] = None,
    ) -> UserFact:
        fact = UserFact(
            user_id=user_id,
            fact_type=fact_type,
            fact_value=fact_value,
            confidence=confidence,
            source_message_id=source_message_id,
        )
        return await self._store.save_user_fact(fact)

    async def get_user_facts(self, user_id: str) -> List[UserFact]:
        return await self._store.get_user_facts(user_id)

    # -------------------------------------------------------------------------
    # Context
    # -------------------------------------------------------------------------

    async def create_context_for_request(self, user_id: str, session_id: str) -> str:
        """
        Memory context for the answer prompt.

        Sections: "Known Facts" about the user and the last five messages
        as "Recent Conversation". Empty string when nothing is known.
        """
        facts = await self._store.get_user_facts(user_id)
        messages = await self._store.get_messages(session_id, limit=CONTEXT_MESSAGE_COUNT)
        return format_memory_context(facts, messages)


def format_memory_context(facts: List[UserFact], messages: List[ChatMessage]) -> str:
    sections = []
    if facts:
        lines = [f"- {f.fact_type}: {f.fact_value}" for f in facts]
        sections.append("Known Facts:\n" + "\n".join(lines))
    if messages:
        lines = [f"{m.role.value}: {m.content}" for m in messages]
        sections.append("Recent Conversation:\n" + "\n".join(lines))
    return "\n\n".join(sections)
