"""
Helpers for pulling JSON and SQL out of free-form model output.

Models often wrap their answer in markdown fences or add prose around it.
These helpers only locate the payload; callers decide what a missing or
malformed payload means.
"""

from typing import Optional


def _tagged_block(text: str, opener: str) -> Optional[str]:
    """
    Return the body of the first fenced block opened with a language tag.

    The block ends at the first "```" followed by a line break, or at the
    last "```" in the text when there is none.
    """
    start = text.find(opener)
    if start == -1:
        return None

    end = text.find("```\n", start)
    if end == -1:
        end = text.rfind("```")
    body_start = start + len(opener)
    if end <= body_start:
        return None
    return text[body_start:end].strip()


def _plain_block(text: str) -> Optional[str]:
    """Return the body between the first "```" and the next one."""
    start = text.find("```")
    if start == -1:
        return None
    body_start = start + 3
    end = text.find("```", body_start)
    if end == -1:
        return None
    return text[body_start:end].strip()


def extract_json(response: str) -> str:
    """
    Locate the JSON document inside a model response.

    Lookup order:
        1. ```json fenced block
        2. plain ``` fenced block
        3. first "{" through last "}"
        4. the whole response, trimmed

    Args:
        response: Raw model output

    Returns:
        Candidate JSON text (not yet decoded)

    Example:
        >>> extract_json('Sure!\\n```json\\n{"tables": []}\\n```')
        '{"tables": []}'
    """
    block = _tagged_block(response, "```json")
    if block is not None:
        return block

    block = _plain_block(response)
    if block is not None:
        return block

    start = response.find("{")
    end = response.rfind("}")
    if start != -1 and end > start:
        return response[start:end + 1]

    return response.strip()


def extract_sql(response: str) -> str:
    """
    Locate a single SQL statement inside a model response.

    Lookup order:
        1. ```sql fenced block
        2. plain ``` fenced block; a first line that is not SQL (a language
           tag such as "postgresql") is dropped
        3. from the first "SELECT" (any case) up to, not including, the next ";"
        4. the whole response, trimmed

    Args:
        response: Raw model output

    Returns:
        SQL text, possibly empty
    """
    block = _tagged_block(response, "```sql")
    if block is not None:
        return block

    block = _plain_block(response)
    if block is not None:
        if "\n" in block:
            first_line, rest = block.split("\n", 1)
            if not first_line.upper().startswith("SELECT"):
                return rest.strip()
        return block

    start = response.upper().find("SELECT")
    if start != -1:
        statement = response[start:]
        end = statement.find(";")
        if end != -1:
            statement = statement[:end]
        return statement.strip()

    return response.strip()
