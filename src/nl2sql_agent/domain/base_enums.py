from enum import Enum


class Dialect(str, Enum):
    """SQL dialect family of a target database."""
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MARIADB = "mariadb"


class QuestionType(str, Enum):
    """Category a user question is classified into before any SQL work."""
    GENERAL = "general"
    TABLE_VIEW = "table_view"
    TEMPORAL_CHART = "temporal_chart"
    CATEGORY_CHART = "category_chart"
    STATISTIC = "statistic"
    COMPLEX = "complex"


class ClassificationConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class QueryComplexity(str, Enum):
    SIMPLE = "simple"
    COMPLEX = "complex"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class QueryStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineEventType(str, Enum):
    """Kinds of events streamed to a session while the agent works."""
    THINKING = "thinking"
    TOKEN = "token"
    TABLE_DATA = "table_data"
    CHART_DATA = "chart_data"
    STATISTIC = "statistic"
    COMPLETE = "complete"
    ERROR = "error"
