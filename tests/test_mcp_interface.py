from datetime import datetime, timezone

import pytest
from fastmcp import FastMCP

from convmem.mcp_interface import MemoryTools, create_app, to_jsonable
from convmem.models.core import MemoryRecord, Role
from convmem.services.conversation import ConversationalMemoryService
from convmem.services.memory_repository import STORE_MESSAGE_QUERY


@pytest.fixture
def service(repository, retrieval, entity_linker, summarizer, model):
    return ConversationalMemoryService(repository=repository,
                                       retrieval=retrieval,
                                       entity_linker=entity_linker,
                                       summarizer=summarizer,
                                       model=model,
                                       embedding_mode='off')


@pytest.fixture
def tools(service):
    return MemoryTools(service)


def test_to_jsonable_flattens_records():
    record = MemoryRecord(content='hi',
                          role=Role.USER,
                          timestamp=datetime(2024, 5, 1, tzinfo=timezone.utc),
                          session_id='s1',
                          similarity=0.9)

    assert to_jsonable([record]) == [{
        'content': 'hi',
        'role': 'user',
        'timestamp': '2024-05-01T00:00:00+00:00',
        'session_id': 's1',
        'metadata': {},
        'similarity': 0.9,
    }]


def test_store_message_and_history(tools):
    result = tools.store_message('u1', 's1', 'hello', 'user', {'channel': 'web'})
    assert result['success'] is True

    history = tools.conversation_history('u1', 's1')
    assert [(turn['role'], turn['content']) for turn in history] == [('user', 'hello')]


def test_store_message_rejects_bad_input(tools):
    with pytest.raises(ValueError):
        tools.store_message('', 's1', 'hello', 'user')
    with pytest.raises(ValueError):
        tools.store_message('u1', 's1', 'hello', 'narrator')


def test_store_message_reports_storage_failure(tools, graph):
    graph.fail(STORE_MESSAGE_QUERY)
    with pytest.raises(RuntimeError):
        tools.store_message('u1', 's1', 'hello', 'user')


def test_search_memory_by_keyword(tools, repository, age_messages):
    repository.store_message('u1', 'My favourite pizza is margherita', 'user', 's1')
    age_messages(1)

    results = tools.search_memory('u1', 'pizza', mode='keyword')

    assert [r['content'] for r in results] == ['My favourite pizza is margherita']
    assert results[0]['role'] == 'user'


def test_find_similar_conversations_with_blank_query(tools, model):
    assert tools.find_similar_conversations('u1', '   ') == []
    assert model.embed_calls == []


def test_extract_entities(tools, model):
    model.responses.append('["Acme"]')
    assert tools.extract_entities('u1', 's1', 'I joined Acme') == ['Acme']


def test_chat_and_summary(tools, model):
    model.responses.extend(['Hi there!', 'A greeting.'])

    result = tools.chat('u1', 's1', 'hello')

    assert result == {'response': 'Hi there!', 'context_used': 0, 'session_id': 's1', 'stored': True}
    assert tools.summarize_conversation('u1', 's1') == 'A greeting.'


def test_chat_requires_message(tools):
    with pytest.raises(ValueError):
        tools.chat('u1', 's1', ' ')


def test_create_app(service):
    assert isinstance(create_app(service), FastMCP)


def test_search_memory_rejects_unknown_mode(tools):
    with pytest.raises(ValueError) as excinfo:
        tools.search_memory('u1', 'pizza', mode='semantic')
    assert excinfo.type is ValueError
    assert 'semantic' in str(excinfo.value)
