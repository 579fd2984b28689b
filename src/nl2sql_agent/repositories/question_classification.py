"""
Question Classification Repository.

Sorts a user question into one of the QuestionType categories before any
SQL work happens. The category decides whether the pipeline runs at all
(general questions are answered conversationally) and how results are
presented (table, chart, single statistic).

Uses strict structured output so the model can only answer with one of the
known categories plus a confidence level.
"""

import json

from nl2sql_agent.config import AgentConfig
from nl2sql_agent.domain.base_enums import MessageRole, QuestionType
from nl2sql_agent.domain.errors import GenerationParseError
from nl2sql_agent.domain.pipeline import ConversationMessage
from nl2sql_agent.domain.types import StructuredSchema
from nl2sql_agent.infrastructure.llm_client import LLMClient
from nl2sql_agent.utils.logging import get_module_logger
from nl2sql_agent.utils.tracing import current_trace_id

logger = get_module_logger()


CLASSIFICATION_PROMPT = """Classify the user's question into ONE of these categories:

1. general: Greetings, pleasantries, or non-data questions
   Examples: "hi", "hello", "how are you", "thanks", "what can you do"

2. table_view: User wants to see/display/list multiple rows from a table
   Examples: "show me users", "display all products", "list orders", "view customers"

3. temporal_chart: User wants to see a TREND or TIME-SERIES with multiple data points over time
   Examples: "users joined over time", "sales trend last 30 days", "growth over months", "daily signups chart"
   NOT for single-value questions like "when did X happen" or "what was the last X"

4. category_chart: User wants to see data grouped by categories (bar chart, pie chart)
   Examples: "users by country", "products by category", "sales by region", "distribution of statuses"

5. statistic: User wants a SINGLE value, count, date, or metric
   Examples: "how many users", "total revenue", "when did the last user log in", "what is the latest order date", "average order value"
   Use this for any question expecting ONE answer (number, date, name, etc.)

6. complex: Multi-step analysis requiring joins or complex aggregation
   Examples: "top 10 customers by lifetime value", "cohort analysis", "users who ordered more than 3 times"

Return the category that best matches."""


CLASSIFICATION_SCHEMA: StructuredSchema = {
    "name": "question_classification",
    "schema": {
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "enum": [question_type.value for question_type in QuestionType],
                "description": "The classification category for the question",
            },
            "confidence": {
                "type": "string",
                "enum": ["high", "medium", "low"],
                "description": "Confidence level in the classification",
            },
        },
        "required": ["category", "confidence"],
        "additionalProperties": False,
    },
}


def parse_classification(response: str) -> QuestionType:
    """
    Map a structured classification response to a QuestionType.

    Unknown categories fall back to QuestionType.COMPLEX, the most general
    data-bearing path.

    Raises:
        GenerationParseError: If the response is not JSON or has no category
    """
    try:
        parsed = json.loads(response)
    except json.JSONDecodeError as e:
        raise GenerationParseError(f"Failed to parse classification: {e}") from e

    category = parsed.get("category") if isinstance(parsed, dict) else None
    if not isinstance(category, str):
        raise GenerationParseError("Missing category in response")

    try:
        return QuestionType(category)
    except ValueError:
        return QuestionType.COMPLEX


class QuestionClassifier:
    """Classifies user questions with a single structured-output call."""

    def __init__(self, llm_client: LLMClient, config: AgentConfig):
        self.llm_client = llm_client
        self.config = config

    async def classify(self, question: str) -> QuestionType:
        """
        Classify a question.

        Args:
            question: User question

        Returns:
            QuestionType for the question

        Raises:
            GenerationParseError: Unparsable classification output
            LLMError: Text-generation service failure
        """
        trace_id = current_trace_id()

        response = await self.llm_client.generate(
            system_prompt=CLASSIFICATION_PROMPT,
            conversation=[
                ConversationMessage(role=MessageRole.USER, content=f'Classify this question: "{question}"'),
            ],
            temperature=self.config.classification_temperature,
            structured_schema=CLASSIFICATION_SCHEMA,
        )

        question_type = parse_classification(response)
        logger.info("Question classified", question_type=question_type.value, trace_id=trace_id)
        return question_type
