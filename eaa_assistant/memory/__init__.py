"""
Memory - chat sessions, messages and user facts

Components:
- ChatStore backends (in-memory, Supabase)
- ChatMemory: conversation-level operations and prompt context
- FactExtractor: learns business facts from user messages
"""

from .facts import FactExtractor, contains_business_info
from .manager import ChatMemory, format_memory_context
from .models import ChatMessage, ChatSession, MessageRole, UserFact
from .store import ChatStore, InMemoryChatStore, SupabaseChatStore

__all__ = [
    "FactExtractor",
    "contains_business_info",
    "ChatMemory",
    "format_memory_context",
    "ChatMessage",
    "ChatSession",
    "MessageRole",
    "UserFact",
    "ChatStore",
    "InMemoryChatStore",
    "SupabaseChatStore",
]
