"""
Chat memory records

Sessions, messages and user facts as stored in the managed database.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    """Author of a chat message"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class ChatSession:
    """A conversation thread owned by one user"""
    id: str
    user_id: str
    title: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    last_activity: str = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChatSession":
        created = row.get("created_at") or utc_now()
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id", "anonymous")),
            title=row.get("title"),
            created_at=created,
            updated_at=row.get("updated_at") or created,
            last_activity=row.get("last_activity") or row.get("updated_at") or created,
            metadata=row.get("metadata") or {},
        )


@dataclass
class ChatMessage:
    """One message in a session"""
    session_id: str
    role: MessageRole
    content: str
    id: str = field(default_factory=new_id)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["role"] = self.role.value
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=str(row.get("id") or new_id()),
            session_id=str(row["session_id"]),
            role=MessageRole(row.get("role", "user")),
            content=row.get("content", ""),
            metadata=row.get("metadata") or {},
            created_at=row.get("created_at") or utc_now(),
        )


@dataclass
class UserFact:
    """
    A fact learned about a user (business type, location, ...).

    One fact per (user_id, fact_type); saving again replaces the value.
    """
    user_id: str
    fact_type: str
    fact_value: str
    confidence: float = 1.0
    source_message_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self):
        try:
            confidence = float(self.confidence)
        except (TypeError, ValueError):
            confidence = 1.0
        if not 0.0 <= confidence <= 1.0:
            confidence = 1.0
        self.confidence = confidence

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "UserFact":
        created = row.get("created_at") or utc_now()
        return cls(
            user_id=str(row["user_id"]),
            fact_type=row["fact_type"],
            fact_value=str(row.get("fact_value", "")),
            confidence=row.get("confidence", 1.0),
            source_message_id=row.get("source_message_id"),
            created_at=created,
            updated_at=row.get("updated_at") or created,
        )
