"""
Amazon Neptune graph database client issuing openCypher queries through the boto3 neptunedata API.
"""

import json
import random
import time
from functools import wraps
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Neptune error codes that are safe to retry: the transaction was rolled back
RETRYABLE_ERROR_CODES = frozenset({
    'ConcurrentModificationException',
    'ThrottlingException',
    'TooManyRequestsException',
    'ServiceUnavailableException',
})


class StorageError(Exception):
    """Custom exception for graph storage errors."""
    pass


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


def retry_on_transient_error(func):
    """Decorator to retry Neptune operations on transient errors and map failures to StorageError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = max(1, self.config.retry_attempts)
        for attempt in range(attempts):
            try:
                return func(self, *args, **kwargs)
            except (ClientError, BotoCoreError) as e:
                code = _error_code(e)
                if code in RETRYABLE_ERROR_CODES and attempt < attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, self.config.retry_delay)
                    logger.warning(f'Neptune {code} in {func.__name__} (attempt {attempt + 1}/{attempts}), '
                                   f'retrying in {delay:.2f}s')
                    time.sleep(delay)
                    continue
                logger.error(f'Error in {func.__name__}: {e}')
                raise StorageError(f'Failed to {func.__name__}: {e}') from e
            except (TypeError, ValueError) as e:
                # Parameters that cannot be serialized or a malformed response body
                logger.error(f'Error in {func.__name__}: {e}')
                raise StorageError(f'Failed to {func.__name__}: {e}') from e

    return wrapper


class NeptuneClient:
    """Amazon Neptune client running openCypher queries, one transaction per query."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune data clients for the writer and (optional) reader endpoints.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.writer = self._connect(config.endpoint)
        if config.reader_endpoint and config.reader_endpoint != config.endpoint:
            self.reader = self._connect(config.reader_endpoint)
        else:
            self.reader = self.writer

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self, endpoint: str):
        """Create a SigV4-signed neptunedata client for one endpoint."""
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        return boto3.client('neptunedata',
                            endpoint_url=f'https://{endpoint}:{self.config.port}',
                            region_name=self.config.region,
                            config=BotoConfig(
                                connect_timeout=self.config.connect_timeout,
                                read_timeout=self.config.read_timeout,
                                retries={'max_attempts': 0}  # We handle retries manually
                            ))

    @retry_on_transient_error
    def run_transaction(self, read_only: bool, query: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Run one openCypher statement as a single transaction.

        Args:
            read_only: Route the query to the reader endpoint
            query: openCypher query text
            parameters: Query parameters

        Returns:
            List of result rows, each a mapping from column name to value

        Raises:
            StorageError: If the transaction cannot be committed
        """
        client = self.reader if read_only else self.writer
        request = {'openCypherQuery': query}
        if parameters:
            request['parameters'] = json.dumps(parameters)

        response = client.execute_open_cypher_query(**request)
        rows = response.get('results', [])
        logger.debug(f'openCypher {"read" if read_only else "write"} returned {len(rows)} rows')
        return rows

    def close(self):
        """Close the Neptune connections."""
        self.writer.close()
        if self.reader is not self.writer:
            self.reader.close()

    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            # Simple query to test connectivity
            self.run_transaction(True, 'MATCH (n) RETURN count(n) AS total LIMIT 1')
            return True
        except StorageError as e:
            logger.error(f'Neptune health check failed: {e}')
            return False
