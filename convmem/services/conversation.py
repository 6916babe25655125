"""
Conversational Memory Service for unified memory operations.
"""

from typing import Any, Dict, List, Optional, Union

from ..models.core import ChatResult, MemoryRecord, RetrievalMode, Role, SessionMessage, SimilarConversation
from ..utils.bedrock_llm import ModelServiceError
from ..utils.config import EMBEDDING_MODES, AppConfig
from ..utils.logging_config import get_logger
from ..utils.model_service import BedrockModelService
from ..utils.neptune_client import NeptuneClient, StorageError
from .context_assembler import ContextAssembler, append_user_turn
from .embedding_queue import EmbeddingQueue, ThreadedEmbeddingQueue
from .entity_linker import EntityLinker
from .memory_repository import MemoryRepository
from .retrieval import RetrievalEngine
from .summarizer import ConversationSummarizer

logger = get_logger(__name__)

RESPONSE_TEMPERATURE = 0.7
RESPONSE_MAX_TOKENS = 1000


class ConversationalMemoryService:
    """Stores conversation turns and answers messages using the memory gathered so far."""

    def __init__(self,
                 repository: MemoryRepository,
                 retrieval: RetrievalEngine,
                 entity_linker: EntityLinker,
                 summarizer: ConversationSummarizer,
                 model: BedrockModelService,
                 assembler: Optional[ContextAssembler] = None,
                 embedding_queue: Optional[EmbeddingQueue] = None,
                 embedding_mode: str = 'sync'):
        if embedding_mode not in EMBEDDING_MODES:
            raise ValueError(f'embedding_mode must be one of {EMBEDDING_MODES}, got {embedding_mode!r}')

        self.repository = repository
        self.retrieval = retrieval
        self.entity_linker = entity_linker
        self.summarizer = summarizer
        self.model = model
        self.assembler = assembler or ContextAssembler()
        self.embedding_queue = embedding_queue
        self.embedding_mode = embedding_mode

        logger.info(f'Initialized ConversationalMemoryService (embedding mode: {embedding_mode})')

    @classmethod
    def from_config(cls, config: AppConfig) -> 'ConversationalMemoryService':
        """Build the production object graph from configuration."""
        graph = NeptuneClient(config.neptune)
        model = BedrockModelService.from_config(config.bedrock_llm, config.bedrock_embed)
        repository = MemoryRepository(graph)

        embedding_queue = None
        if config.embedding.mode == 'async':
            embedding_queue = ThreadedEmbeddingQueue(model,
                                                     repository,
                                                     workers=config.embedding.workers,
                                                     max_attempts=config.embedding.max_attempts,
                                                     retry_delay=config.embedding.retry_delay)

        return cls(repository=repository,
                   retrieval=RetrievalEngine(graph, model, config.retrieval),
                   entity_linker=EntityLinker(model, repository),
                   summarizer=ConversationSummarizer(repository, model),
                   model=model,
                   embedding_queue=embedding_queue,
                   embedding_mode=config.embedding.mode)

    def store_message(self,
                      user_id: str,
                      session_id: str,
                      content: str,
                      role: Union[Role, str],
                      metadata: Union[Dict[str, Any], str, None] = None,
                      embedding_mode: Optional[str] = None) -> Optional[str]:
        """Store a message, embedding it now, later, or not at all.

        An embedding failure never prevents the message from being stored.

        Returns:
            The message id, or None if the write failed

        Raises:
            ValidationError: If role, user_id or session_id are malformed
        """
        mode = embedding_mode or self.embedding_mode
        if mode not in EMBEDDING_MODES:
            raise ValueError(f'embedding_mode must be one of {EMBEDDING_MODES}, got {mode!r}')
        role = Role.parse(role)

        embedding = None
        if mode == 'sync' and content and content.strip():
            try:
                embedding = self.model.embed(content)
            except ModelServiceError as e:
                logger.warning(f'Storing message without embedding (user {user_id}, session {session_id}): {e}')

        try:
            message_id = self.repository.store_message(user_id, content, role, session_id, metadata, embedding)
        except StorageError as e:
            logger.error(f'Message not stored (user {user_id}, session {session_id}, role {role.value}): {e}')
            return None

        if mode == 'async':
            if self.embedding_queue is None:
                logger.warning(f'No embedding queue configured; message {message_id} stays without embedding')
            else:
                self.embedding_queue.submit(message_id, content)

        return message_id

    def store_with_entities(self, user_id: str, session_id: str, content: str, role: Union[Role, str]) -> List[str]:
        """Store a message and link the entities it mentions.

        Returns:
            Linked entity names, empty if the message could not be stored
        """
        message_id = self.store_message(user_id, session_id, content, role)
        if message_id is None:
            return []
        return self.entity_linker.extract_and_link(message_id, user_id, content, role)

    def query_relevant_memory(self,
                              user_id: str,
                              query_text: str,
                              limit: Optional[int] = None,
                              days_back: Optional[int] = None,
                              mode: Union[RetrievalMode, str] = RetrievalMode.EMBEDDING) -> List[MemoryRecord]:
        return self.retrieval.retrieve(user_id, query_text, limit=limit, days_back=days_back, mode=mode)

    def find_similar_conversations(self,
                                   user_id: str,
                                   query_text: str,
                                   threshold: Optional[float] = None,
                                   limit: Optional[int] = None) -> List[SimilarConversation]:
        return self.retrieval.find_similar_conversations(user_id, query_text, threshold=threshold, limit=limit)

    def fetch_session(self, user_id: str, session_id: str) -> List[SessionMessage]:
        return self.repository.fetch_session(user_id, session_id)

    def summarize(self, user_id: str, session_id: str) -> str:
        return self.summarizer.summarize(user_id, session_id)

    def respond(self, user_id: str, session_id: str, message: str, system_prompt: Optional[str] = None) -> ChatResult:
        """Answer a user message with relevant memory in context, then store both turns.

        Raises:
            ModelServiceError: If the completion fails; nothing is stored in that case
        """
        memory_context = self.retrieval.retrieve(user_id, message)
        prompt = append_user_turn(self.assembler.build_prompt(memory_context, system_prompt), message)

        try:
            response_text = self.model.complete(prompt, temperature=RESPONSE_TEMPERATURE, max_tokens=RESPONSE_MAX_TOKENS)
        except ModelServiceError as e:
            logger.error(f'Failed to generate response (user {user_id}, session {session_id}): {e}')
            raise

        stored = self.store_message(user_id, session_id, message, Role.USER) is not None
        if response_text:
            stored = self.store_message(user_id, session_id, response_text, Role.ASSISTANT) is not None and stored

        return ChatResult(response=response_text, context_used=len(memory_context), session_id=session_id, stored=stored)

    def close(self) -> None:
        if self.embedding_queue is not None:
            self.embedding_queue.close()
