"""
Runtime table configuration.

``configure_from_schema`` turns a normalized schema into an immutable
TableConfig; a DynamicModel is built from one TableConfig and never
reconfigured afterwards.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    select,
)
from sqlalchemy.sql import Select

from crud6.core.exceptions import SchemaValidationError
from crud6.core.schemas.fields import VIRTUAL_FIELD_TYPES, FieldType

logger = logging.getLogger(__name__)

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"
DELETED_AT = "deleted_at"

CAST_TYPES = {
    FieldType.INTEGER.value: "int",
    FieldType.FLOAT.value: "float",
    FieldType.DECIMAL.value: "float",
    FieldType.BOOLEAN.value: "bool",
    FieldType.JSON.value: "json",
    FieldType.DATE.value: "date",
    FieldType.DATETIME.value: "datetime",
}

COLUMN_TYPES = {
    "int": Integer,
    "float": Float,
    "bool": Boolean,
    "json": JSON,
    "date": Date,
    "datetime": DateTime,
    "string": String,
}

TRUE_STRINGS = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class TableConfig:
    """Everything a repository needs to know about one table."""

    name: str
    model: str
    primary_key: str = "id"
    fillable: Tuple[str, ...] = ()
    casts: Mapping[str, str] = field(default_factory=dict)
    hidden: Tuple[str, ...] = ()
    timestamps: bool = True
    soft_delete: bool = False
    deleted_at_column: Optional[str] = None
    connection: Optional[str] = None
    columns: Tuple[str, ...] = ()


def cast_for_type(field_type: Optional[str]) -> str:
    """Map a schema field type to a value cast."""
    if isinstance(field_type, str) and field_type.startswith(FieldType.BOOLEAN.value):
        return "bool"
    return CAST_TYPES.get(field_type or "", "string")


def configure_from_schema(schema: Dict[str, Any]) -> TableConfig:
    """Build the table configuration for a normalized schema."""
    table = schema.get("table")
    if not table or not isinstance(table, str):
        raise SchemaValidationError(
            f"Cannot configure model '{schema.get('model', 'unknown')}': schema has no table"
        )

    primary_key = schema.get("primary_key") or "id"
    fields = schema.get("fields") if isinstance(schema.get("fields"), dict) else {}

    fillable = []
    casts = {}
    hidden = []
    columns = []
    for name, spec in fields.items():
        spec = spec if isinstance(spec, dict) else {}
        field_type = spec.get("type") or FieldType.STRING.value
        persisted = not spec.get("computed") and field_type not in VIRTUAL_FIELD_TYPES

        if persisted:
            columns.append(name)
            casts[name] = cast_for_type(field_type)

        writable = {"create", "edit"} & set(spec.get("show_in") or [])
        if persisted and writable and not spec.get("auto_increment"):
            fillable.append(name)

        if field_type == FieldType.PASSWORD.value:
            hidden.append(name)

    if primary_key not in columns:
        columns.insert(0, primary_key)
        casts.setdefault(primary_key, "int")

    timestamps = bool(schema.get("timestamps", True))
    if timestamps:
        for name in (CREATED_AT, UPDATED_AT):
            if name not in columns:
                columns.append(name)
                casts[name] = "datetime"

    soft_delete = bool(schema.get("soft_delete", False))
    deleted_at_column = DELETED_AT if soft_delete else None
    if deleted_at_column and deleted_at_column not in columns:
        columns.append(deleted_at_column)
        casts[deleted_at_column] = "datetime"

    config = TableConfig(
        name=table,
        model=schema.get("model", table),
        primary_key=primary_key,
        fillable=tuple(fillable),
        casts=casts,
        hidden=tuple(hidden),
        timestamps=timestamps,
        soft_delete=soft_delete,
        deleted_at_column=deleted_at_column,
        connection=schema.get("connection"),
        columns=tuple(columns),
    )
    logger.debug(
        "Configured table '%s' for model '%s' (%d fillable, soft_delete=%s)",
        config.name,
        config.model,
        len(config.fillable),
        config.soft_delete,
    )
    return config


class DynamicModel:
    """A table described at runtime, bound to one TableConfig."""

    def __init__(self, config: TableConfig):
        self.config = config
        self.table = self._build_table()

    @classmethod
    def from_schema(cls, schema: Dict[str, Any]) -> "DynamicModel":
        return cls(configure_from_schema(schema))

    def __repr__(self) -> str:
        return f"<DynamicModel {self.config.model} table={self.config.name}>"

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def primary_key_column(self) -> Column:
        return self.table.c[self.config.primary_key]

    def column(self, name: str) -> Column:
        return self.table.c[name]

    def has_column(self, name: str) -> bool:
        return name in self.table.c

    def _build_table(self) -> Table:
        columns = []
        for name in self.config.columns:
            cast = self.config.casts.get(name, "string")
            column_type = COLUMN_TYPES.get(cast, String)
            if name == self.config.primary_key:
                columns.append(Column(name, column_type, primary_key=True))
            else:
                columns.append(Column(name, column_type))
        return Table(self.config.name, MetaData(), *columns)

    # ----------------- VALUES ----------------- #
    def cast_value(self, name: str, value: Any) -> Any:
        """Convert an incoming value to the column's Python type."""
        if value is None:
            return None

        cast = self.config.casts.get(name, "string")
        if cast == "int":
            return int(value)
        if cast == "float":
            return float(value)
        if cast == "bool":
            if isinstance(value, str):
                return value.strip().lower() in TRUE_STRINGS
            return bool(value)
        if cast == "json":
            if isinstance(value, str):
                try:
                    return json.loads(value)
                except ValueError:
                    return value
            return value
        if cast == "date":
            if isinstance(value, datetime):
                return value.date()
            if isinstance(value, str):
                return date.fromisoformat(value[:10])
            return value
        if cast == "datetime":
            if isinstance(value, str):
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            return value
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return value

    def fill(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only fillable keys, cast to their column types."""
        return {
            name: self.cast_value(name, value)
            for name, value in data.items()
            if name in self.config.fillable
        }

    def cast_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Turn a result row into a plain dict, dropping hidden columns."""
        record = {}
        for name, value in row.items():
            if name in self.config.hidden:
                continue
            if value is not None and self.config.casts.get(name) == "bool":
                value = bool(value)
            record[name] = value
        return record

    # ----------------- QUERIES ----------------- #
    def base_select(self, include_deleted: bool = False) -> Select:
        """SELECT over all columns with the soft-delete scope applied."""
        stmt = select(self.table)
        if include_deleted:
            return stmt
        return self.apply_soft_delete_scope(stmt)

    def apply_soft_delete_scope(self, stmt: Select) -> Select:
        """Exclude soft-deleted rows; leaves the statement untouched when soft delete is off."""
        column = self.config.deleted_at_column
        if not self.config.soft_delete or not column:
            return stmt
        return stmt.where(self.table.c[column].is_(None))
