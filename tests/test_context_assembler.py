from datetime import datetime, timezone

from convmem.models.core import MemoryRecord, Role
from convmem.services.context_assembler import (CONTEXT_HEADER, DEFAULT_SYSTEM_PROMPT, ContextAssembler,
                                                append_user_turn, build_prompt)


def record(content, role, second):
    return MemoryRecord(content=content,
                        role=role,
                        timestamp=datetime(2024, 1, 1, 12, 0, second, tzinfo=timezone.utc),
                        session_id='s1')


def test_default_system_prompt_without_memory():
    assert build_prompt([]) == [{'role': 'system', 'content': DEFAULT_SYSTEM_PROMPT}]


def test_custom_system_prompt_comes_first():
    messages = build_prompt([], system_prompt='You are a pirate.')
    assert messages == [{'role': 'system', 'content': 'You are a pirate.'}]


def test_memory_is_rendered_oldest_first():
    # Retrieval returns newest first
    records = [record('Pizza, obviously.', Role.ASSISTANT, 2), record('What do I like?', Role.USER, 1)]

    messages = build_prompt(records, 'Be brief.')

    assert len(messages) == 2
    assert messages[0] == {'role': 'system', 'content': 'Be brief.'}
    assert messages[1]['role'] == 'system'
    assert messages[1]['content'] == (CONTEXT_HEADER + 'user: What do I like?\n'
                                      'assistant: Pizza, obviously.\n')


def test_append_user_turn_does_not_mutate_prefix():
    prefix = build_prompt([])
    messages = append_user_turn(prefix, 'hello')

    assert messages[-1] == {'role': 'user', 'content': 'hello'}
    assert len(prefix) == 1


def test_assembler_uses_its_default_prompt():
    assembler = ContextAssembler(default_system_prompt='House style.')

    assert assembler.build_prompt([])[0]['content'] == 'House style.'
    assert assembler.build_prompt([], 'Override.')[0]['content'] == 'Override.'
