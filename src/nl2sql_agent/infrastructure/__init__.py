"""
Infrastructure layer for external integrations.

This module contains clients for the target databases (PostgreSQL via
asyncpg, MySQL/MariaDB via mysql-connector-python) and the LLM provider.
"""

from .database_client import DatabaseClient
from .llm_client import LLMClient
from .mysql_client import MySQLClient

__all__ = ["DatabaseClient", "LLMClient", "MySQLClient"]
