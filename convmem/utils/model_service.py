"""
Language-model service used by the memory engine: chat completion plus text embedding on Amazon Bedrock.
"""

from typing import Any, Dict, List, Optional, Tuple

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import BedrockEmbedConfig, BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


def to_bedrock_messages(messages: List[Dict[str, str]]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """Split chat messages into a Bedrock system prompt and Converse-format turns.

    System-role entries are joined into the system prompt in order. Consecutive
    turns with the same role are merged, since Converse requires alternation.
    """
    system_parts = []
    turns: List[Dict[str, Any]] = []

    for message in messages:
        role = message.get('role')
        content = message.get('content') or ''
        if role == 'system':
            if content.strip():
                system_parts.append(content)
            continue

        if turns and turns[-1]['role'] == role:
            turns[-1]['content'].append({'text': content})
        else:
            turns.append({'role': role, 'content': [{'text': content}]})

    system_prompt = '\n\n'.join(system_parts) if system_parts else None
    return system_prompt, turns


class BedrockModelService:
    """Chat completion and embedding operations against Bedrock."""

    def __init__(self, llm: BedrockLLM, embedder: BedrockEmbed):
        self.llm = llm
        self.embedder = embedder

    @classmethod
    def from_config(cls, llm_config: BedrockLLMConfig, embed_config: BedrockEmbedConfig) -> 'BedrockModelService':
        return cls(BedrockLLM(llm_config), BedrockEmbed(embed_config))

    def complete(self, messages: List[Dict[str, str]], temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> str:
        """Run a single completion over role/content messages.

        Raises:
            ModelServiceError: If the completion call fails
        """
        system_prompt, turns = to_bedrock_messages(messages)
        response, metrics = self.llm.generate_response(messages=turns,
                                                       system_prompt=system_prompt,
                                                       max_tokens=max_tokens,
                                                       temperature=temperature)
        if metrics:
            logger.debug(f'Completion metrics: {metrics}')
        return response.strip()

    def embed(self, text: str) -> List[float]:
        """Embed stored message text.

        Raises:
            EmbeddingError: If the text is empty or the call fails
        """
        return self.embedder.embed_document(text)

    def embed_query(self, text: str) -> List[float]:
        """Embed search text, using the query input type on models that distinguish it.

        Raises:
            EmbeddingError: If the text is empty or the call fails
        """
        return self.embedder.embed_query(text)

    def health_check(self) -> bool:
        return self.llm.health_check() and self.embedder.health_check()
