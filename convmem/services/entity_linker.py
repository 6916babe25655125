"""
Entity Linker: extracts named entities from a message with the LLM and links them into the graph.
"""

from typing import List, Union

from ..models.core import Role
from ..utils.bedrock_llm import ModelServiceError
from ..utils.json_utils import ParseError, parse_json_response
from ..utils.logging_config import get_logger
from ..utils.model_service import BedrockModelService
from ..utils.neptune_client import StorageError
from .memory_repository import MemoryRepository

logger = get_logger(__name__)

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 500

EXTRACTION_INSTRUCTION = """Extract key entities (people, places, topics, organizations) from this text.
Only extract entities that are explicitly mentioned. Do not infer or assume entities.
Return only a JSON array of strings, for example ["Ada Lovelace", "London"], or [] if there are none.

Text:
"""


def parse_entity_names(response: str) -> List[str]:
    """Parse the LLM's entity list.

    Raises:
        ParseError: If the response is not a JSON array of strings
    """
    entities = parse_json_response(response)
    if not isinstance(entities, list):
        raise ParseError(f'Expected a JSON array of entity names, got {type(entities).__name__}')
    if not all(isinstance(entity, str) for entity in entities):
        raise ParseError('Entity list contains non-string items')
    return entities


class EntityLinker:
    """Extract entities from messages and attach them with MENTIONS edges."""

    def __init__(self, model: BedrockModelService, repository: MemoryRepository):
        self.model = model
        self.repository = repository
        logger.info('Initialized EntityLinker')

    def extract_and_link(self, message_id: str, user_id: str, content: str, role: Union[Role, str]) -> List[str]:
        """Extract entities from a stored message and link them to it.

        Failures are logged and yield an empty list; the message itself is never affected.

        Args:
            message_id: Id of the already stored message
            user_id: Owner of the message, for diagnostics
            content: Message text
            role: Message role, for diagnostics

        Returns:
            Entity names linked to the message

        Raises:
            ValidationError: If role is not recognized
        """
        role = Role.parse(role)
        if not content or not content.strip():
            return []

        try:
            response = self.model.complete([{
                'role': 'user',
                'content': f'{EXTRACTION_INSTRUCTION}{content}'
            }],
                                           temperature=EXTRACTION_TEMPERATURE,
                                           max_tokens=EXTRACTION_MAX_TOKENS)
        except ModelServiceError as e:
            logger.error(f'LLM error during entity extraction for message {message_id} (user {user_id}): {e}')
            return []

        try:
            names = parse_entity_names(response)
        except ParseError as e:
            logger.error(f'Failed to parse entities for message {message_id} (user {user_id}): {e}')
            return []

        try:
            linked = self.repository.link_entities(message_id, names)
        except StorageError as e:
            logger.error(f'Failed to store entities for message {message_id} (user {user_id}): {e}')
            return []

        logger.debug(f'Linked {len(linked)} entities to {role.value} message {message_id}')
        return linked
