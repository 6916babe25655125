"""
Retrieval Engine for hybrid keyword/embedding search over a user's message history.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..models.core import (CONVERSATIONAL_ROLES, MemoryRecord, RetrievalMode, Role, SessionMessage,
                           SimilarConversation)
from ..utils.bedrock_llm import ModelServiceError
from ..utils.config import RetrievalConfig
from ..utils.logging_config import get_logger
from ..utils.model_service import BedrockModelService
from ..utils.neptune_client import NeptuneClient, StorageError
from ..utils.timestamp_utils import days_ago, to_datetime
from .memory_repository import load_embedding, load_metadata

logger = get_logger(__name__)

STOP_WORDS = frozenset({'the', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by'})
MAX_KEYWORDS = 5
MIN_KEYWORD_LENGTH = 3

KEYWORD_SEARCH_QUERY = """
MATCH (u:User {id: $user_id})-[:SENT]->(m:Message)
WHERE (
  any(keyword IN $keywords WHERE toLower(m.content) CONTAINS keyword)
  OR m.timestamp > $since
)
AND m.role IN $roles
RETURN m.content AS content,
       m.role AS role,
       m.timestamp AS timestamp,
       m.session_id AS session_id,
       m.metadata AS metadata
ORDER BY m.timestamp DESC
LIMIT $limit
"""

EMBEDDING_CANDIDATES_QUERY = """
MATCH (u:User {id: $user_id})-[:SENT]->(m:Message)
WHERE m.embedding IS NOT NULL
  AND m.role IN $roles
  AND m.timestamp > $since
RETURN m.content AS content,
       m.role AS role,
       m.timestamp AS timestamp,
       m.session_id AS session_id,
       m.metadata AS metadata,
       m.embedding AS embedding
"""

SIMILAR_CANDIDATES_QUERY = """
MATCH (u:User {id: $user_id})-[:SENT]->(m:Message)
WHERE m.embedding IS NOT NULL
RETURN m.id AS id,
       m.content AS content,
       m.role AS role,
       m.timestamp AS timestamp,
       m.session_id AS session_id,
       m.embedding AS embedding
"""

NEIGHBORHOOD_QUERY = """
UNWIND $anchors AS anchor
MATCH (u:User {id: $user_id})-[:SENT]->(r:Message)
WHERE r.session_id = anchor.session_id
  AND r.timestamp > anchor.timestamp - $window
  AND r.timestamp < anchor.timestamp + $window
RETURN anchor.id AS anchor_id,
       r.content AS content,
       r.role AS role,
       r.timestamp AS timestamp
ORDER BY r.timestamp ASC
"""


def extract_keywords(text: str) -> List[str]:
    """Pick up to five distinct lowercase keywords, in order of first appearance."""
    keywords = []
    for word in re.split(r'\W+', (text or '').lower()):
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) == MAX_KEYWORDS:
            break
    return keywords


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    a_np = np.asarray(a, dtype=float)
    b_np = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(a_np)
    norm_b = np.linalg.norm(b_np)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a_np, b_np) / (norm_a * norm_b))


def _to_record(row: Dict[str, Any], similarity: Optional[float] = None) -> MemoryRecord:
    return MemoryRecord(content=row.get('content') or '',
                        role=Role(row['role']),
                        timestamp=to_datetime(row['timestamp']),
                        session_id=row.get('session_id') or '',
                        metadata=load_metadata(row.get('metadata')),
                        similarity=similarity)


class RetrievalEngine:
    """Hybrid memory lookup: embedding similarity first, keyword matching as the fallback."""

    def __init__(self, graph: NeptuneClient, model: BedrockModelService, config: RetrievalConfig):
        self.graph = graph
        self.model = model
        self.config = config
        logger.info('Initialized RetrievalEngine')

    def retrieve(self,
                 user_id: str,
                 query_text: str,
                 limit: Optional[int] = None,
                 days_back: Optional[int] = None,
                 mode: Union[RetrievalMode, str] = RetrievalMode.EMBEDDING) -> List[MemoryRecord]:
        """Find the memory most relevant to a query.

        Embedding mode falls back to keyword mode when the query cannot be embedded
        or the candidate read fails. Never raises for storage or model failures.

        Args:
            user_id: Whose history to search
            query_text: Text to match against
            limit: Maximum number of records
            days_back: Size of the trailing time window in days
            mode: keyword or embedding

        Returns:
            Records, most relevant first
        """
        limit = self.config.default_limit if limit is None else limit
        days_back = self.config.default_days_back if days_back is None else days_back
        mode = RetrievalMode.parse(mode)
        if limit <= 0:
            return []

        if mode is RetrievalMode.EMBEDDING:
            try:
                return self._retrieve_by_embedding(user_id, query_text, limit, days_back)
            except (ModelServiceError, StorageError) as e:
                logger.warning(f'Embedding retrieval failed for user {user_id}, falling back to keywords: {e}')

        return self._retrieve_by_keywords(user_id, query_text, limit, days_back)

    def _retrieve_by_keywords(self, user_id: str, query_text: str, limit: int, days_back: int) -> List[MemoryRecord]:
        keywords = extract_keywords(query_text)
        try:
            rows = self.graph.run_transaction(True, KEYWORD_SEARCH_QUERY, {
                'user_id': user_id,
                'keywords': keywords,
                'since': days_ago(days_back),
                'roles': list(CONVERSATIONAL_ROLES),
                'limit': limit
            })
        except StorageError as e:
            logger.error(f'Keyword retrieval failed for user {user_id}: {e}')
            return []

        records = [_to_record(row) for row in rows][:limit]
        logger.debug(f'Keyword retrieval returned {len(records)} records for user {user_id} (keywords={keywords})')
        return records

    def _retrieve_by_embedding(self, user_id: str, query_text: str, limit: int, days_back: int) -> List[MemoryRecord]:
        query_embedding = self.model.embed_query(query_text)
        rows = self.graph.run_transaction(True, EMBEDDING_CANDIDATES_QUERY, {
            'user_id': user_id,
            'since': days_ago(days_back),
            'roles': list(CONVERSATIONAL_ROLES)
        })

        scored = self._score(rows, query_embedding, self.config.similarity_threshold)
        records = [_to_record(row, similarity) for similarity, row in scored[:limit]]
        logger.debug(f'Embedding retrieval returned {len(records)} of {len(rows)} candidates for user {user_id}')
        return records

    def _score(self, rows: List[Dict[str, Any]], query_embedding: List[float], threshold: float):
        """Pair rows with their similarity, keep those above threshold, best first then newest first."""
        scored = []
        for row in rows:
            embedding = load_embedding(row.get('embedding'))
            if embedding is None:
                continue
            if len(embedding) != len(query_embedding):
                logger.warning(f'Skipping stored embedding with dimension {len(embedding)} '
                               f'(query has {len(query_embedding)})')
                continue
            similarity = cosine_similarity(query_embedding, embedding)
            if similarity > threshold:
                scored.append((similarity, row))

        scored.sort(key=lambda item: (item[0], float(item[1]['timestamp'])), reverse=True)
        return scored

    def find_similar_conversations(self,
                                   user_id: str,
                                   query_text: str,
                                   threshold: Optional[float] = None,
                                   limit: Optional[int] = None) -> List[SimilarConversation]:
        """Find messages similar to a query along with their surrounding turns in the same session.

        Returns:
            Matches ordered by similarity, or an empty list if the query cannot be embedded
        """
        threshold = self.config.similar_threshold if threshold is None else threshold
        limit = self.config.similar_limit if limit is None else limit
        if limit <= 0:
            return []

        try:
            query_embedding = self.model.embed_query(query_text)
        except ModelServiceError as e:
            logger.warning(f'Could not embed query for similar conversations (user {user_id}): {e}')
            return []

        try:
            rows = self.graph.run_transaction(True, SIMILAR_CANDIDATES_QUERY, {'user_id': user_id})
            anchors = self._score(rows, query_embedding, threshold)[:limit]
            if not anchors:
                return []

            neighbours = self.graph.run_transaction(True, NEIGHBORHOOD_QUERY, {
                'user_id': user_id,
                'window': self.config.neighborhood_seconds,
                'anchors': [{
                    'id': row['id'],
                    'session_id': row['session_id'],
                    'timestamp': row['timestamp']
                } for _, row in anchors]
            })
        except StorageError as e:
            logger.error(f'Failed to find similar conversations for user {user_id}: {e}')
            return []

        related: Dict[str, List[SessionMessage]] = {}
        for row in neighbours:
            related.setdefault(row['anchor_id'], []).append(
                SessionMessage(content=row.get('content') or '', role=Role(row['role']),
                               timestamp=to_datetime(row['timestamp'])))

        results = []
        for similarity, row in anchors:
            messages = sorted(related.get(row['id'], []), key=lambda message: message.timestamp)
            results.append(
                SimilarConversation(original_message=SessionMessage(content=row.get('content') or '',
                                                                    role=Role(row['role']),
                                                                    timestamp=to_datetime(row['timestamp'])),
                                    similarity=similarity,
                                    session_id=row.get('session_id') or '',
                                    related_messages=messages))

        logger.debug(f'Found {len(results)} similar conversations for user {user_id}')
        return results
