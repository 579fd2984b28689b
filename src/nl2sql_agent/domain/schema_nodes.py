"""
Schema models for a target database.

A Schema is introspected once per pipeline run and treated as immutable
input; the selector derives pruned copies from it.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Column(BaseModel):
    """Represents one column of a database table."""

    model_config = ConfigDict(frozen=True)

    name : str = Field(..., description="Name of the column")
    data_type : str = Field(..., description="Declared data type of the column")
    is_nullable : bool = Field(default=True, description="Indicates if the column can contain null values")
    is_primary_key : bool = Field(default=False, description="Indicates if the column is part of the primary key")
    is_foreign_key : bool = Field(default=False, description="Indicates if the column references another table")
    foreign_key_table : Optional[str] = Field(default=None, description="Referenced table when the column is a foreign key")
    foreign_key_column : Optional[str] = Field(default=None, description="Referenced column when the column is a foreign key")

    @property
    def is_key(self) -> bool:
        """True for columns that joins depend on (primary or foreign keys)."""
        return self.is_primary_key or self.is_foreign_key


class Table(BaseModel):
    """Represents a database table with its ordered columns."""

    model_config = ConfigDict(frozen=True)

    name : str = Field(..., description="Name of the table")
    schema_name : Optional[str] = Field(default=None, description="Namespace the table belongs to")
    row_count : Optional[int] = Field(default=None, description="Approximate number of rows")
    columns : List[Column] = Field(default_factory=list, description="Ordered list of columns")
    indexes : List[str] = Field(default_factory=list, description="Index names defined on the table")
    triggers : List[str] = Field(default_factory=list, description="Trigger names defined on the table")
    constraints : List[str] = Field(default_factory=list, description="Constraint names defined on the table")

    def find_column(self, column_name: str) -> Optional[Column]:
        """Case-insensitive column lookup."""
        wanted = column_name.lower()
        for column in self.columns:
            if column.name.lower() == wanted:
                return column
        return None


class Schema(BaseModel):
    """Database name plus its ordered list of tables."""

    model_config = ConfigDict(frozen=True)

    database_name : str = Field(..., description="Name of the database")
    tables : List[Table] = Field(default_factory=list, description="Ordered list of tables")

    @property
    def table_names(self) -> List[str]:
        return [table.name for table in self.tables]

    def find_table(self, table_name: str) -> Optional[Table]:
        """Case-insensitive table lookup."""
        wanted = table_name.lower()
        for table in self.tables:
            if table.name.lower() == wanted:
                return table
        return None
