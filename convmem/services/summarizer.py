"""
Conversation Summarizer for whole sessions.
"""

from ..utils.bedrock_llm import ModelServiceError
from ..utils.logging_config import get_logger
from ..utils.model_service import BedrockModelService
from ..utils.neptune_client import StorageError
from .memory_repository import MemoryRepository

logger = get_logger(__name__)

NO_CONVERSATION_MESSAGE = 'No conversation found for this session.'
SUMMARY_ERROR_MESSAGE = 'Error generating summary'

SUMMARY_INSTRUCTION = 'Provide a concise summary of this conversation:\n'
SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 200


class ConversationSummarizer:
    """Summarize a session's messages in chronological order."""

    def __init__(self, repository: MemoryRepository, model: BedrockModelService):
        self.repository = repository
        self.model = model

    def summarize(self, user_id: str, session_id: str) -> str:
        """Summarize a session.

        Returns:
            The summary, NO_CONVERSATION_MESSAGE for an empty session, or
            SUMMARY_ERROR_MESSAGE if the session could not be read or summarized
        """
        try:
            messages = self.repository.fetch_session(user_id, session_id)
        except StorageError as e:
            logger.error(f'Failed to read session {session_id} for summary (user {user_id}): {e}')
            return SUMMARY_ERROR_MESSAGE

        if not messages:
            return NO_CONVERSATION_MESSAGE

        conversation_text = '\n'.join(f'{message.role.value}: {message.content}' for message in messages)

        try:
            summary = self.model.complete([{
                'role': 'user',
                'content': f'{SUMMARY_INSTRUCTION}{conversation_text}'
            }],
                                          temperature=SUMMARY_TEMPERATURE,
                                          max_tokens=SUMMARY_MAX_TOKENS)
        except ModelServiceError as e:
            logger.error(f'Failed to summarize session {session_id} (user {user_id}): {e}')
            return SUMMARY_ERROR_MESSAGE

        logger.debug(f'Summarized {len(messages)} messages of session {session_id}')
        return summary
