"""Extract JSON from LLM responses."""
from __future__ import annotations
import json
import re


def find_balanced_object(text: str, start: int = 0) -> str | None:
    """Return the first balanced ``{...}`` span at or after ``start``.

    Braces inside JSON string literals are ignored.
    """
    begin = text.find('{', start)
    while begin != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(begin, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == '\\':
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    return text[begin:index + 1]
        begin = text.find('{', begin + 1)
    return None


def extract_json_from_response(text: str) -> dict:
    """Extract a JSON object from LLM response text.

    Strategies in order:
    1. Direct JSON parse of entire text
    2. Find ```json ... ``` block
    3. First balanced { ... } object, skipping candidates that fail to parse
    """
    text = text.strip()

    # Strategy 1: direct parse
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Strategy 2: ```json block
    json_block = re.search(r'```(?:json)?\s*\n(.*?)\n\s*```', text, re.DOTALL)
    if json_block:
        try:
            parsed = json.loads(json_block.group(1))
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    # Strategy 3: first balanced object
    cursor = 0
    while True:
        candidate = find_balanced_object(text, cursor)
        if candidate is None:
            break
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            cursor = text.find(candidate, cursor) + 1

    raise ValueError(f"Could not extract JSON from response: {text[:200]}...")
