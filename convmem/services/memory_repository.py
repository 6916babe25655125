"""
Memory Repository owning the conversation graph schema.

Graph layout:
    (:User {id})-[:SENT]->(:Message {id, content, role, timestamp, session_id, metadata, embedding?})
    (:Message)-[:FOLLOWED_BY]->(:Message)   within one user's session, oldest to newest
    (:Message)-[:MENTIONS]->(:Entity {name})

`metadata` and `embedding` are stored as JSON strings. Every method issues a single
openCypher statement, so each call is one Neptune transaction.
"""

import json
import uuid
from typing import Any, Dict, Iterable, List, Optional, Union

from ..models.core import Role, SessionMessage, ValidationError
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, StorageError
from ..utils.session_lock import SessionLockRegistry
from ..utils.timestamp_utils import next_timestamp, to_datetime

logger = get_logger(__name__)

_STORE_MESSAGE_TEMPLATE = """
MERGE (u:User {{id: $user_id}})
CREATE (m:Message {{
  id: $message_id,
  content: $content,
  role: $role,
  timestamp: $timestamp,
  session_id: $session_id,
  metadata: $metadata{embedding_property}
}})
CREATE (u)-[:SENT]->(m)
WITH u, m
OPTIONAL MATCH (u)-[:SENT]->(prev:Message)
WHERE prev.session_id = $session_id AND prev.timestamp < m.timestamp
WITH m, prev
ORDER BY prev.timestamp DESC
LIMIT 1
WITH m, prev
WHERE prev IS NOT NULL
CREATE (prev)-[:FOLLOWED_BY]->(m)
RETURN prev.id AS previous_id
"""

STORE_MESSAGE_QUERY = _STORE_MESSAGE_TEMPLATE.format(embedding_property='')
STORE_MESSAGE_WITH_EMBEDDING_QUERY = _STORE_MESSAGE_TEMPLATE.format(embedding_property=',\n  embedding: $embedding')

FILL_EMBEDDING_QUERY = """
MATCH (m:Message {id: $message_id})
WHERE m.embedding IS NULL
SET m.embedding = $embedding
RETURN m.id AS message_id
"""

LINK_ENTITIES_QUERY = """
MATCH (m:Message {id: $message_id})
UNWIND $entity_names AS entity_name
MERGE (e:Entity {name: entity_name})
MERGE (m)-[:MENTIONS]->(e)
RETURN e.name AS name
"""

FETCH_SESSION_QUERY = """
MATCH (u:User {id: $user_id})-[:SENT]->(m:Message)
WHERE m.session_id = $session_id
RETURN m.content AS content,
       m.role AS role,
       m.timestamp AS timestamp
ORDER BY m.timestamp ASC
"""


def dump_metadata(metadata: Union[Dict[str, Any], str, None]) -> str:
    """Serialize caller metadata; strings are assumed to be serialized already."""
    if metadata is None:
        return '{}'
    if isinstance(metadata, str):
        return metadata
    return json.dumps(metadata, default=str)


def load_metadata(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.warning('Discarding undecodable message metadata')
        return {}
    return value if isinstance(value, dict) else {'value': value}


def dump_embedding(embedding: Iterable[float]) -> str:
    return json.dumps([float(value) for value in embedding])


def load_embedding(raw: Union[str, List[float], None]) -> Optional[List[float]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning('Ignoring undecodable stored embedding')
            return None
    if not isinstance(raw, list) or not raw:
        return None
    return [float(value) for value in raw]


def normalize_entity_names(entity_names: Iterable[str]) -> List[str]:
    """Trim names, dropping blanks and exact (case-sensitive) duplicates while keeping order."""
    seen = set()
    names = []
    for name in entity_names:
        if not isinstance(name, str):
            continue
        name = name.strip()
        if name and name not in seen:
            seen.add(name)
            names.append(name)
    return names


def _require(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} is required')
    return value


class MemoryRepository:
    """Creates users, messages and entities in the graph and keeps per-session chains linear."""

    def __init__(self, graph: NeptuneClient, session_locks: Optional[SessionLockRegistry] = None):
        self.graph = graph
        self.session_locks = session_locks or SessionLockRegistry()
        logger.info('Initialized MemoryRepository')

    def store_message(self,
                      user_id: str,
                      content: str,
                      role: Union[Role, str],
                      session_id: str,
                      metadata: Union[Dict[str, Any], str, None] = None,
                      embedding: Optional[List[float]] = None) -> str:
        """Persist one message and link it after the latest earlier message of its session.

        Args:
            user_id: Owner of the message, upserted as a User node
            content: Message text
            role: user, assistant or system
            session_id: Conversation the message belongs to
            metadata: Opaque metadata, serialized to JSON
            embedding: Optional vector stored atomically with the message

        Returns:
            Generated message id

        Raises:
            ValidationError: If role, user_id or session_id are malformed
            StorageError: If the transaction cannot be committed
        """
        role = Role.parse(role)
        _require(user_id, 'user_id')
        _require(session_id, 'session_id')

        message_id = str(uuid.uuid4())
        parameters = {
            'user_id': user_id,
            'message_id': message_id,
            'content': content or '',
            'role': role.value,
            'session_id': session_id,
            'metadata': dump_metadata(metadata),
        }
        query = STORE_MESSAGE_QUERY
        if embedding:
            parameters['embedding'] = dump_embedding(embedding)
            query = STORE_MESSAGE_WITH_EMBEDDING_QUERY

        # Timestamp is taken under the lock so chain order matches commit order
        with self.session_locks.hold(user_id, session_id):
            parameters['timestamp'] = next_timestamp()
            try:
                rows = self.graph.run_transaction(False, query, parameters)
            except StorageError as e:
                logger.error(f'Failed to store message for user {user_id} session {session_id}: {e}')
                raise

        previous_id = rows[0].get('previous_id') if rows else None
        logger.debug(f'Stored message {message_id} (role={role.value}, session={session_id}, '
                     f'follows={previous_id or "none"}, embedding={"yes" if embedding else "no"})')
        return message_id

    def fill_embedding(self, message_id: str, embedding: List[float]) -> bool:
        """Set a message's embedding if it has none yet.

        Returns:
            True if the message was updated, False if it was missing or already embedded

        Raises:
            StorageError: If the update fails
        """
        if not embedding:
            raise ValidationError('embedding must be a non-empty vector')
        try:
            rows = self.graph.run_transaction(False, FILL_EMBEDDING_QUERY, {
                'message_id': message_id,
                'embedding': dump_embedding(embedding)
            })
        except StorageError as e:
            logger.error(f'Failed to store embedding for message {message_id}: {e}')
            raise

        if not rows:
            logger.debug(f'Embedding not written for message {message_id}: missing or already embedded')
            return False
        return True

    def link_entities(self, message_id: str, entity_names: Iterable[str]) -> List[str]:
        """Upsert Entity nodes by trimmed name and MERGE a MENTIONS edge from the message to each.

        Returns:
            Names linked to the message

        Raises:
            StorageError: If the transaction fails
        """
        names = normalize_entity_names(entity_names)
        if not names:
            return []

        try:
            rows = self.graph.run_transaction(False, LINK_ENTITIES_QUERY, {
                'message_id': message_id,
                'entity_names': names
            })
        except StorageError as e:
            logger.error(f'Failed to link entities to message {message_id}: {e}')
            raise

        linked = [row['name'] for row in rows if row.get('name')]
        if not linked:
            logger.warning(f'No entities linked: message {message_id} not found')
        return linked

    def fetch_session(self, user_id: str, session_id: str) -> List[SessionMessage]:
        """Return every message of a user's session, oldest first.

        Raises:
            StorageError: If the read fails
        """
        try:
            rows = self.graph.run_transaction(True, FETCH_SESSION_QUERY, {'user_id': user_id, 'session_id': session_id})
        except StorageError as e:
            logger.error(f'Failed to fetch session {session_id} for user {user_id}: {e}')
            raise

        return [
            SessionMessage(content=row.get('content') or '', role=Role(row['role']), timestamp=to_datetime(row['timestamp']))
            for row in rows
        ]
