"""
JSON utilities for cleaning and parsing LLM responses.
"""

import json
from typing import Any


class ParseError(Exception):
    """Custom exception for malformed structured responses."""
    pass


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_json_response(response: str) -> Any:
    """Parse a (possibly fenced) JSON payload returned by an LLM.

    Raises:
        ParseError: If the payload is empty or not valid JSON
    """
    cleaned = clean_json_response(response or '')
    if not cleaned:
        raise ParseError('Empty response where JSON was expected')
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f'Invalid JSON in response: {e}') from e
