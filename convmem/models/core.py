"""
Core data models for the conversational memory system.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ValidationError(ValueError):
    """Custom exception for malformed caller input."""
    pass


class Role(str, Enum):
    """Author of a message."""
    USER = 'user'
    ASSISTANT = 'assistant'
    SYSTEM = 'system'

    @classmethod
    def parse(cls, value: Union['Role', str]) -> 'Role':
        """Coerce a caller-supplied role, rejecting anything outside the enumeration."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        allowed = ', '.join(role.value for role in cls)
        raise ValidationError(f'Unrecognized role {value!r}; expected one of: {allowed}')


# Roles that take part in memory retrieval
CONVERSATIONAL_ROLES = (Role.USER.value, Role.ASSISTANT.value)


class RetrievalMode(str, Enum):
    """Strategy used to look up relevant memory."""
    KEYWORD = 'keyword'
    EMBEDDING = 'embedding'

    @classmethod
    def parse(cls, value: Union['RetrievalMode', str]) -> 'RetrievalMode':
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        allowed = ', '.join(mode.value for mode in cls)
        raise ValidationError(f'Unrecognized retrieval mode {value!r}; expected one of: {allowed}')


@dataclass
class MemoryRecord:
    """A stored message returned by memory retrieval."""
    content: str
    role: Role
    timestamp: datetime
    session_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    similarity: Optional[float] = None  # Only set in embedding mode


@dataclass
class SessionMessage:
    """One turn of a conversation, as returned by session reads."""
    content: str
    role: Role
    timestamp: datetime


@dataclass
class SimilarConversation:
    """A message similar to a query plus the messages around it in the same session."""
    original_message: SessionMessage
    similarity: float
    session_id: str
    related_messages: List[SessionMessage] = field(default_factory=list)


@dataclass
class ChatResult:
    """Outcome of answering a user message with memory."""
    response: str
    context_used: int
    session_id: str
    stored: bool  # Both turns were written back to memory
