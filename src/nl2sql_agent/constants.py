"""
Hard limits that are not configurable per call site.

Config values in AgentConfig may lower these but never raise them.
"""

# -------------------------
# Result Limits
# -------------------------

# Absolute row cap applied by the sanitizer to every model-generated statement
MAX_ROW_LIMIT = 100

# Offset used when the execution service paginates a statement without LIMIT
DEFAULT_OFFSET = 0

# -------------------------
# Conversation History
# -------------------------

# Prior turns folded into prompts (5 user/assistant exchanges)
HISTORY_MAX_MESSAGES = 10

# Characters kept per history entry before "..." is appended
HISTORY_MAX_CHARS = 200

# -------------------------
# Tool Calling
# -------------------------

EXECUTE_SQL_TOOL_NAME = "execute_sql"

# Rows of a tool result shown back to the model in the tool-calling loop
OBSERVATION_PREVIEW_ROWS = 20
