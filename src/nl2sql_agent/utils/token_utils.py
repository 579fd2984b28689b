"""
Input size utilities for LLM prompts.

Simple character-based checks and truncation so prompts stay within
model limits. Uses hard character limits for simplicity.
"""

from typing import Optional, Sequence


def truncate_text(text: str, max_chars: int, marker: str = "...") -> str:
    """
    Truncate text to max_chars characters, appending a marker when cut.

    The marker is added after the kept prefix, so the result may be
    len(marker) characters longer than max_chars.

    Args:
        text: Text to truncate
        max_chars: Number of characters to keep
        marker: Suffix appended when text was cut

    Returns:
        Original text if within limit, otherwise prefix + marker

    Example:
        >>> truncate_text("a" * 250, 200)
        'aaaa...'  # 200 chars + "..."
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + marker


class InputValidator:
    """
    Input validation utility for checking character limits.

    Uses simple character count checks against hard limits.
    """

    @staticmethod
    def validate_char_limit(
        text: str,
        max_chars: int,
        error_message: Optional[str] = None
    ) -> None:
        """
        Validate that text does not exceed maximum character limit.

        Args:
            text: Text to validate
            max_chars: Maximum allowed characters
            error_message: Optional custom error message

        Raises:
            ValueError: If text exceeds character limit
        """
        char_count = len(text)

        if char_count > max_chars:
            if error_message:
                raise ValueError(error_message)
            raise ValueError(
                f"Input too large: {char_count} characters, "
                f"maximum allowed: {max_chars}"
            )

    @staticmethod
    def validate_conversation_chars(
        system_prompt: str,
        messages: Sequence[str],
        max_chars: int
    ) -> None:
        """
        Validate total character count for a chat request.

        Args:
            system_prompt: System prompt text
            messages: Text of every conversation message
            max_chars: Maximum allowed total characters

        Raises:
            ValueError: If total exceeds character limit

        Example:
            >>> InputValidator.validate_conversation_chars("Hi", ["Hello"], max_chars=1000)  # OK
        """
        total_chars = len(system_prompt) + sum(len(m) for m in messages)

        if total_chars > max_chars:
            raise ValueError(
                f"Total input too large: {total_chars} characters, "
                f"maximum allowed: {max_chars}"
            )
