"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import ValidationError
from .services.conversation import ConversationalMemoryService
from .utils.config import AppConfig, load_config
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert records into plain JSON types for tool results."""
    if is_dataclass(value):
        value = asdict(value)
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _require(value: str, name: str) -> str:
    if not value or not value.strip():
        raise ValueError(f'{name} is required')
    return value


class MemoryTools:
    """Tool implementations shared by the MCP server, independent of the transport."""

    def __init__(self, service: ConversationalMemoryService):
        self.service = service

    def store_message(self, user_id: str, session_id: str, message: str, role: str,
                      metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        _require(user_id, 'User ID')
        _require(session_id, 'Session ID')
        try:
            message_id = self.service.store_message(user_id, session_id, message, role, metadata)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        if message_id is None:
            raise RuntimeError('Failed to store message')
        return {'success': True, 'message_id': message_id}

    def search_memory(self, user_id: str, query: str = '', limit: int = 20, days_back: int = 30,
                      mode: str = 'embedding') -> List[Dict[str, Any]]:
        _require(user_id, 'User ID')
        try:
            records = self.service.query_relevant_memory(user_id, query or '', limit=limit, days_back=days_back, mode=mode)
        except ValidationError as e:
            raise ValueError(str(e)) from e
        logger.debug(f'MCP search returned {len(records)} memories for user {user_id}')
        return to_jsonable(records)

    def find_similar_conversations(self, user_id: str, query: str, threshold: float = 0.75,
                                   limit: int = 5) -> List[Dict[str, Any]]:
        _require(user_id, 'User ID')
        if not query or not query.strip():
            return []
        return to_jsonable(self.service.find_similar_conversations(user_id, query, threshold=threshold, limit=limit))

    def extract_entities(self, user_id: str, session_id: str, message: str, role: str = 'user') -> List[str]:
        _require(user_id, 'User ID')
        _require(session_id, 'Session ID')
        try:
            return self.service.store_with_entities(user_id, session_id, message, role)
        except ValidationError as e:
            raise ValueError(str(e)) from e

    def conversation_history(self, user_id: str, session_id: str) -> List[Dict[str, Any]]:
        _require(user_id, 'User ID')
        _require(session_id, 'Session ID')
        return to_jsonable(self.service.fetch_session(user_id, session_id))

    def summarize_conversation(self, user_id: str, session_id: str) -> str:
        _require(user_id, 'User ID')
        _require(session_id, 'Session ID')
        return self.service.summarize(user_id, session_id)

    def chat(self, user_id: str, session_id: str, message: str, system_prompt: Optional[str] = None) -> Dict[str, Any]:
        _require(user_id, 'User ID')
        _require(session_id, 'Session ID')
        _require(message, 'Message')
        return to_jsonable(self.service.respond(user_id, session_id, message, system_prompt))


def create_app(service: ConversationalMemoryService, config: Optional[AppConfig] = None) -> FastMCP:
    """Build the MCP server around an already constructed service."""
    mcp = FastMCP('Conversational Memory')
    tools = MemoryTools(service)

    @mcp.tool()
    def store_message(user_id: str, session_id: str, message: str, role: str,
                      metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Store one conversation turn.

        Args:
            user_id: User ID
            session_id: Conversation session ID
            message: Message text
            role: user, assistant or system
            metadata: Optional metadata stored with the message

        Returns:
            Dictionary with the generated message_id
        """
        return tools.store_message(user_id, session_id, message, role, metadata)

    @mcp.tool()
    def search_memory(user_id: str, query: str = '', limit: int = 20, days_back: int = 30,
                      mode: str = 'embedding') -> List[Dict[str, Any]]:
        """Search the user's conversation history.

        Args:
            user_id: User ID
            query: Natural language query
            limit: Maximum number of results to return (default: 20)
            days_back: Trailing window in days (default: 30)
            mode: 'embedding' (falls back to keywords) or 'keyword'

        Returns:
            Matching messages, most relevant first
        """
        return tools.search_memory(user_id, query, limit, days_back, mode)

    @mcp.tool()
    def find_similar_conversations(user_id: str, query: str, threshold: float = 0.75,
                                   limit: int = 5) -> List[Dict[str, Any]]:
        """Find past messages similar to the query together with their surrounding turns."""
        return tools.find_similar_conversations(user_id, query, threshold, limit)

    @mcp.tool()
    def extract_entities(user_id: str, session_id: str, message: str, role: str = 'user') -> List[str]:
        """Store a message and link the people, places, topics and organizations it mentions."""
        return tools.extract_entities(user_id, session_id, message, role)

    @mcp.tool()
    def conversation_history(user_id: str, session_id: str) -> List[Dict[str, Any]]:
        """Return every message of a session in chronological order."""
        return tools.conversation_history(user_id, session_id)

    @mcp.tool()
    def summarize_conversation(user_id: str, session_id: str) -> str:
        """Summarize a session."""
        return tools.summarize_conversation(user_id, session_id)

    @mcp.tool()
    def chat(user_id: str, session_id: str, message: str, system_prompt: Optional[str] = None) -> Dict[str, Any]:
        """Answer a message using relevant memory, then store both turns."""
        return tools.chat(user_id, session_id, message, system_prompt)

    if config is not None:

        @mcp.tool()
        def system_info() -> Dict[str, Any]:
            """Report configuration and the health of Bedrock and Neptune."""
            return get_system_info(config)

    return mcp


def main() -> None:
    config = load_config()
    setup_logging(config)
    service = ConversationalMemoryService.from_config(config)
    mcp = create_app(service, config)
    try:
        if config.mcp.transport == 'stdio':
            mcp.run(transport='stdio')
        else:
            mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
    finally:
        service.close()


if __name__ == '__main__':
    main()
