"""
Presentation decisions for executed results.

Pure functions of (question type, result shape) deciding which views a
client should render. Each is exhaustive over QuestionType.
"""

from typing import Any

from nl2sql_agent.domain.base_enums import QuestionType
from nl2sql_agent.domain.responses import ExecutionResult


def is_single_value(result: ExecutionResult) -> bool:
    return result.row_count == 1 and result.column_count == 1


def should_show_table(question_type: QuestionType, result: ExecutionResult) -> bool:
    """Whether the result should be shown as a data table."""
    if question_type == QuestionType.TABLE_VIEW:
        return True
    if question_type == QuestionType.STATISTIC:
        # A lone value is shown as a statistic instead
        return not is_single_value(result)
    if question_type in (QuestionType.TEMPORAL_CHART, QuestionType.CATEGORY_CHART):
        return result.row_count > 1 or result.column_count > 2
    if question_type == QuestionType.COMPLEX:
        return True
    return False


def should_show_chart(question_type: QuestionType, result: ExecutionResult) -> bool:
    """Whether the result has enough shape for a chart."""
    if question_type in (QuestionType.TEMPORAL_CHART, QuestionType.CATEGORY_CHART):
        return result.row_count > 1
    if question_type == QuestionType.COMPLEX:
        return result.row_count > 1 and result.column_count >= 2
    return False


def should_show_statistic(question_type: QuestionType, result: ExecutionResult) -> bool:
    """Whether the result is a single statistic to highlight."""
    return question_type == QuestionType.STATISTIC and result.row_count == 1


def format_scalar(value: Any) -> str:
    """
    Render a single result value for an answer sentence.

    Strings are shown raw, None as "null", booleans lowercase.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
