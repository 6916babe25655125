"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .bedrock_llm import ModelServiceError
from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingError(ModelServiceError):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = boto3.client(service_name='bedrock-runtime',
                                    region_name=config.region,
                                    config=BotoConfig(connect_timeout=config.connect_timeout,
                                                      read_timeout=config.read_timeout,
                                                      retries={'max_attempts': 0}))

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            EmbeddingError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise EmbeddingError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}') from e

            except (ValueError, AttributeError) as e:
                logger.error(f'Unexpected response from Bedrock Embed: {e}')
                raise EmbeddingError(f'Unexpected Bedrock Embed response: {e}') from e

        raise EmbeddingError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _embed(self, text: str, input_type: str) -> List[float]:
        if not text or not text.strip():
            raise EmbeddingError('Cannot embed empty text')
        text = text.strip()

        model = self.model_id.lower()
        if 'titan' in model:
            data = {'inputText': text, 'dimensions': self.output_embedding_length}
            embedding = self._call_with_retry(data).get('embedding')

        elif 'cohere' in model:
            if self.output_embedding_length != 1024:
                raise EmbeddingError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

            data = {'input_type': input_type, 'texts': [text]}
            embeddings = self._call_with_retry(data).get('embeddings') or [None]
            embedding = embeddings[0]

        else:
            raise EmbeddingError(f'Unsupported embedding model: {self.model_id}')

        if not embedding:
            raise EmbeddingError(f'Bedrock Embed returned no vector for model {self.model_id}')
        return [float(value) for value in embedding]

    def embed_document(self, text: str) -> List[float]:
        """
        Generate embeddings for stored message text.

        Raises:
            EmbeddingError: If the text is empty or embedding generation fails
        """
        return self._embed(text, 'search_document')

    def embed_query(self, text: str) -> List[float]:
        """
        Generate embeddings for query text.

        Raises:
            EmbeddingError: If the text is empty or embedding generation fails
        """
        return self._embed(text, 'search_query')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except EmbeddingError as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
