"""
Context Assembler: turns retrieved memory into the prompt prefix sent to the LLM.
"""

from typing import Dict, List, Optional, Sequence

from ..models.core import MemoryRecord, Role

DEFAULT_SYSTEM_PROMPT = 'You are a helpful assistant. Use the conversation history to provide contextual responses.'
CONTEXT_HEADER = 'Previous conversation context:\n'


def build_prompt(memory_records: Sequence[MemoryRecord], system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    """Build the system entries that precede the live user turn.

    Records arrive most recent first and are rendered oldest first.
    """
    messages = [{'role': Role.SYSTEM.value, 'content': system_prompt or DEFAULT_SYSTEM_PROMPT}]

    if memory_records:
        lines = [f'{Role.parse(record.role).value}: {record.content}\n' for record in reversed(memory_records)]
        messages.append({'role': Role.SYSTEM.value, 'content': CONTEXT_HEADER + ''.join(lines)})

    return messages


def append_user_turn(messages: List[Dict[str, str]], content: str) -> List[Dict[str, str]]:
    return messages + [{'role': Role.USER.value, 'content': content}]


class ContextAssembler:
    """Prompt builder with a configurable fallback system prompt."""

    def __init__(self, default_system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self.default_system_prompt = default_system_prompt

    def build_prompt(self, memory_records: Sequence[MemoryRecord], system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
        return build_prompt(memory_records, system_prompt or self.default_system_prompt)
