"""Shared fixtures: an in-memory graph store and a scripted model service."""

from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

from convmem.services import memory_repository as repo_queries
from convmem.services import retrieval as retrieval_queries
from convmem.services.entity_linker import EntityLinker
from convmem.services.memory_repository import MemoryRepository
from convmem.services.retrieval import RetrievalEngine
from convmem.services.summarizer import ConversationSummarizer
from convmem.utils.bedrock_embed import EmbeddingError
from convmem.utils.bedrock_llm import ModelServiceError
from convmem.utils.config import RetrievalConfig
from convmem.utils.neptune_client import StorageError


class InMemoryGraphStore:
    """Test double for NeptuneClient.

    Executes the engine's named openCypher statements against Python
    dictionaries with the same semantics. Parameters go through a JSON
    round-trip, as they do on the way to Neptune.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.users: set = set()
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.sent: Dict[str, str] = {}  # message id -> user id
        self.followed_by: List[tuple] = []
        self.entities: set = set()
        self.mentions: set = set()
        self.calls: List[tuple] = []
        self.failing: set = set()
        self.failures_left: Dict[str, int] = {}

        self.handlers: Dict[str, Callable] = {
            repo_queries.STORE_MESSAGE_QUERY: self._store_message,
            repo_queries.STORE_MESSAGE_WITH_EMBEDDING_QUERY: self._store_message,
            repo_queries.FILL_EMBEDDING_QUERY: self._fill_embedding,
            repo_queries.LINK_ENTITIES_QUERY: self._link_entities,
            repo_queries.FETCH_SESSION_QUERY: self._fetch_session,
            retrieval_queries.KEYWORD_SEARCH_QUERY: self._keyword_search,
            retrieval_queries.EMBEDDING_CANDIDATES_QUERY: self._embedding_candidates,
            retrieval_queries.SIMILAR_CANDIDATES_QUERY: self._similar_candidates,
            retrieval_queries.NEIGHBORHOOD_QUERY: self._neighborhood,
        }

    def fail(self, query: str, times: Optional[int] = None) -> None:
        """Make a query raise StorageError, forever or for the next `times` calls."""
        if times is None:
            self.failing.add(query)
        else:
            self.failures_left[query] = times

    def run_transaction(self, read_only: bool, query: str, parameters: Optional[Dict[str, Any]] = None):
        parameters = json.loads(json.dumps(parameters or {}))
        self.calls.append((read_only, query, parameters))

        if query in self.failing:
            raise StorageError('simulated storage failure')
        if self.failures_left.get(query, 0) > 0:
            self.failures_left[query] -= 1
            raise StorageError('simulated storage failure')

        with self.lock:
            return self.handlers[query](parameters)

    # Helpers for assertions

    def user_messages(self, user_id: str) -> List[Dict[str, Any]]:
        return [message for message_id, message in self.messages.items() if self.sent.get(message_id) == user_id]

    def session_messages(self, user_id: str, session_id: str) -> List[Dict[str, Any]]:
        return sorted((m for m in self.user_messages(user_id) if m['session_id'] == session_id),
                      key=lambda m: m['timestamp'])

    def session_edges(self, session_id: str) -> List[tuple]:
        return [(a, b) for a, b in self.followed_by if self.messages[b]['session_id'] == session_id]

    # Statement implementations

    def _store_message(self, p):
        self.users.add(p['user_id'])
        message = {
            'id': p['message_id'],
            'content': p['content'],
            'role': p['role'],
            'timestamp': p['timestamp'],
            'session_id': p['session_id'],
            'metadata': p['metadata'],
        }
        if 'embedding' in p:
            message['embedding'] = p['embedding']
        self.messages[message['id']] = message
        self.sent[message['id']] = p['user_id']

        earlier = [m for m in self.user_messages(p['user_id'])
                   if m['session_id'] == p['session_id'] and m['timestamp'] < message['timestamp']]
        if not earlier:
            return []
        previous = max(earlier, key=lambda m: m['timestamp'])
        self.followed_by.append((previous['id'], message['id']))
        return [{'previous_id': previous['id']}]

    def _fill_embedding(self, p):
        message = self.messages.get(p['message_id'])
        if message is None or message.get('embedding') is not None:
            return []
        message['embedding'] = p['embedding']
        return [{'message_id': message['id']}]

    def _link_entities(self, p):
        if p['message_id'] not in self.messages:
            return []
        rows = []
        for name in p['entity_names']:
            self.entities.add(name)
            self.mentions.add((p['message_id'], name))
            rows.append({'name': name})
        return rows

    def _fetch_session(self, p):
        return [{
            'content': m['content'],
            'role': m['role'],
            'timestamp': m['timestamp']
        } for m in self.session_messages(p['user_id'], p['session_id'])]

    @staticmethod
    def _record(m, *extra):
        row = {
            'content': m['content'],
            'role': m['role'],
            'timestamp': m['timestamp'],
            'session_id': m['session_id'],
            'metadata': m['metadata'],
        }
        for key in extra:
            row[key] = m.get(key)
        return row

    def _keyword_search(self, p):
        matches = []
        for m in self.user_messages(p['user_id']):
            if m['role'] not in p['roles']:
                continue
            has_keyword = any(keyword in m['content'].lower() for keyword in p['keywords'])
            if has_keyword or m['timestamp'] > p['since']:
                matches.append(m)
        matches.sort(key=lambda m: m['timestamp'], reverse=True)
        return [self._record(m) for m in matches[:p['limit']]]

    def _embedding_candidates(self, p):
        return [
            self._record(m, 'embedding') for m in self.user_messages(p['user_id'])
            if m.get('embedding') is not None and m['role'] in p['roles'] and m['timestamp'] > p['since']
        ]

    def _similar_candidates(self, p):
        return [
            self._record(m, 'id', 'embedding') for m in self.user_messages(p['user_id'])
            if m.get('embedding') is not None
        ]

    def _neighborhood(self, p):
        rows = []
        for anchor in p['anchors']:
            for m in self.user_messages(p['user_id']):
                if (m['session_id'] == anchor['session_id']
                        and anchor['timestamp'] - p['window'] < m['timestamp'] < anchor['timestamp'] + p['window']):
                    rows.append({
                        'anchor_id': anchor['id'],
                        'content': m['content'],
                        'role': m['role'],
                        'timestamp': m['timestamp']
                    })
        rows.sort(key=lambda row: row['timestamp'])
        return rows


class StubModelService:
    """Scripted stand-in for BedrockModelService."""

    def __init__(self, embeddings: Optional[Dict[str, List[float]]] = None, responses: Optional[List[str]] = None):
        self.embeddings = dict(embeddings or {})
        self.responses = list(responses or [])
        self.embed_error: Optional[Exception] = None
        self.complete_error: Optional[Exception] = None
        self.embed_calls: List[str] = []
        self.query_calls: List[str] = []
        self.prompts: List[dict] = []

    def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        if not text or not text.strip():
            raise EmbeddingError('Cannot embed empty text')
        if text not in self.embeddings:
            raise EmbeddingError(f'no embedding scripted for {text!r}')
        return self.embeddings[text]

    def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        return self.embed(text)

    def complete(self, messages, temperature=None, max_tokens=None) -> str:
        self.prompts.append({'messages': messages, 'temperature': temperature, 'max_tokens': max_tokens})
        if self.complete_error is not None:
            raise self.complete_error
        if not self.responses:
            raise ModelServiceError('no response scripted')
        return self.responses.pop(0)


@pytest.fixture
def graph() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def model() -> StubModelService:
    return StubModelService()


@pytest.fixture
def retrieval_config() -> RetrievalConfig:
    return RetrievalConfig(similarity_threshold=0.7,
                           default_limit=10,
                           default_days_back=30,
                           similar_threshold=0.75,
                           similar_limit=5,
                           neighborhood_seconds=300)


@pytest.fixture
def repository(graph) -> MemoryRepository:
    return MemoryRepository(graph)


@pytest.fixture
def retrieval(graph, model, retrieval_config) -> RetrievalEngine:
    return RetrievalEngine(graph, model, retrieval_config)


@pytest.fixture
def entity_linker(model, repository) -> EntityLinker:
    return EntityLinker(model, repository)


@pytest.fixture
def summarizer(repository, model) -> ConversationSummarizer:
    return ConversationSummarizer(repository, model)


@pytest.fixture
def assert_single_chain(graph):
    """FOLLOWED_BY edges of a session link its messages oldest to newest, one hop each."""

    def check(user_id: str, session_id: str) -> None:
        messages = graph.session_messages(user_id, session_id)
        expected = [(a['id'], b['id']) for a, b in zip(messages, messages[1:])]
        edges = graph.session_edges(session_id)
        assert len(edges) == len(messages) - 1
        assert sorted(edges) == sorted(expected)

    return check


@pytest.fixture
def age_messages(graph):
    """Move every stored message `days` days into the past."""

    def shift(days: float) -> None:
        for message in graph.messages.values():
            message['timestamp'] -= days * 24 * 3600

    return shift
