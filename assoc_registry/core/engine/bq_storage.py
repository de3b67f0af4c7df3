"""
BigQuery storage backend.

Each collection is a table with a few typed columns (the ones the hierarchy
engine filters and writes on) plus an `attributes` JSON string column holding
the opaque business fields. All statements are parameterized; field names are
validated by `Condition` before they are interpolated.
"""

import json
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from google.cloud import bigquery

from assoc_registry.app.config import settings
from assoc_registry.core.engine.bq_client import BigQueryClient, get_bigquery_client
from assoc_registry.core.engine.storage import (
    ASSOCIATIONS,
    CLUBS,
    FIELD_PATTERN,
    REGISTRATIONS,
    Condition,
    StorageAdapter,
    Where,
    check_collection,
)
from assoc_registry.core.exceptions import classify_exception
from assoc_registry.core.utils.logging import get_logger

logger = get_logger(__name__)

ATTRIBUTES_COLUMN = "attributes"

TABLE_COLUMNS: Dict[str, Dict[str, str]] = {
    ASSOCIATIONS: {
        "id": "STRING",
        "code": "STRING",
        "name": "STRING",
        "parent_id": "STRING",
        "level": "INT64",
        "hierarchy": "ARRAY<STRING>",
        "status": "STRING",
        "created_at": "TIMESTAMP",
        "created_by": "STRING",
        "updated_at": "TIMESTAMP",
        "updated_by": "STRING",
    },
    CLUBS: {
        "id": "STRING",
        "parent_id": "STRING",
        "name": "STRING",
        "code": "STRING",
        "status": "STRING",
    },
    REGISTRATIONS: {
        "id": "STRING",
        "association_id": "STRING",
        "status": "STRING",
    },
}


def _scalar_type(value: Any) -> str:
    # bool before int: bool is a subclass of int
    if isinstance(value, bool):
        return "BOOL"
    if isinstance(value, int):
        return "INT64"
    if isinstance(value, float):
        return "FLOAT64"
    if isinstance(value, datetime):
        return "TIMESTAMP"
    if isinstance(value, date):
        return "DATE"
    return "STRING"


def _param(name: str, value: Any, declared_type: Optional[str] = None):
    if declared_type and declared_type.startswith("ARRAY<"):
        return bigquery.ArrayQueryParameter(name, declared_type[6:-1], list(value or []))
    if isinstance(value, (list, tuple)):
        element_type = _scalar_type(value[0]) if value else "STRING"
        return bigquery.ArrayQueryParameter(name, element_type, list(value))
    return bigquery.ScalarQueryParameter(name, declared_type or _scalar_type(value), value)


class BigQueryStorage(StorageAdapter):
    """Registry storage on BigQuery tables."""

    def __init__(self, bq_client: Optional[BigQueryClient] = None):
        self.bq_client = bq_client or get_bigquery_client()
        self._tables = {
            ASSOCIATIONS: settings.get_table_ref(settings.associations_table),
            CLUBS: settings.get_table_ref(settings.clubs_table),
            REGISTRATIONS: settings.get_table_ref(settings.registrations_table),
        }

    # ==========================================================================
    # Row Mapping
    # ==========================================================================

    def _table(self, collection: str) -> str:
        return self._tables[check_collection(collection)]

    def _row_to_record(self, collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
        record = {k: v for k, v in row.items() if k != ATTRIBUTES_COLUMN}
        raw = row.get(ATTRIBUTES_COLUMN)
        if raw:
            attributes = json.loads(raw) if isinstance(raw, str) else dict(raw)
            for key, value in attributes.items():
                record.setdefault(key, value)
        return record

    def _split(self, collection: str, fields: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        columns = TABLE_COLUMNS[collection]
        column_values = {k: v for k, v in fields.items() if k in columns}
        attributes = {k: v for k, v in fields.items() if k not in columns}
        return column_values, attributes

    def _expr(self, collection: str, field: str) -> str:
        if not FIELD_PATTERN.match(field):
            raise ValueError(f"Invalid field name: {field}")
        if field in TABLE_COLUMNS[collection]:
            return field
        return f"JSON_VALUE({ATTRIBUTES_COLUMN}, '$.{field}')"

    def _compile_where(self, collection: str, where: Where) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for i, condition in enumerate(where):
            name = f"w{i}"
            clause, param = self._compile_condition(collection, condition, name)
            clauses.append(clause)
            if param is not None:
                params.append(param)
        sql = " AND ".join(clauses) if clauses else "TRUE"
        return sql, params

    def _compile_condition(self, collection: str, condition: Condition, name: str):
        columns = TABLE_COLUMNS[collection]
        if condition.op == "search":
            exprs = [
                f"LOWER(IFNULL({self._expr(collection, f)}, '')) LIKE @{name}"
                for f in condition.field_names
            ]
            pattern = f"%{str(condition.value).lower()}%"
            return "(" + " OR ".join(exprs) + ")", bigquery.ScalarQueryParameter(name, "STRING", pattern)

        expr = self._expr(collection, condition.field)
        declared = columns.get(condition.field)

        if condition.op == "eq":
            if condition.value is None:
                return f"{expr} IS NULL", None
            return f"{expr} = @{name}", _param(name, condition.value, declared)
        if condition.op == "ne":
            if condition.value is None:
                return f"{expr} IS NOT NULL", None
            return f"({expr} IS NULL OR {expr} != @{name})", _param(name, condition.value, declared)
        if condition.op == "contains":
            return f"@{name} IN UNNEST({expr})", _param(name, condition.value)
        if condition.op == "in":
            return f"{expr} IN UNNEST(@{name})", _param(name, list(condition.value))
        raise ValueError(f"Unsupported operator: {condition.op}")

    def _run(self, sql: str, params: Sequence[Any], operation: str) -> List[Dict[str, Any]]:
        try:
            return self.bq_client.query(sql, params)
        except Exception as e:
            logger.error(f"BigQuery {operation} failed: {e}")
            raise classify_exception(e) from e

    # ==========================================================================
    # StorageAdapter
    # ==========================================================================

    def find_by_id(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        sql = f"SELECT * FROM `{self._table(collection)}` WHERE id = @id LIMIT 1"
        rows = self._run(sql, [bigquery.ScalarQueryParameter("id", "STRING", record_id)], "find_by_id")
        return self._row_to_record(collection, rows[0]) if rows else None

    def find_where(
        self,
        collection: str,
        where: Where,
        limit: Optional[int] = None,
        offset: int = 0,
        order_by: Optional[Sequence[str]] = None
    ) -> List[Dict[str, Any]]:
        clause, params = self._compile_where(collection, where)
        sql = f"SELECT * FROM `{self._table(collection)}` WHERE {clause}"
        if order_by:
            parts = []
            for field in order_by:
                direction = "DESC" if field.startswith("-") else "ASC"
                parts.append(f"{self._expr(collection, field.lstrip('-'))} {direction}")
            sql += " ORDER BY " + ", ".join(parts)
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
            if offset:
                sql += f" OFFSET {int(offset)}"
        rows = self._run(sql, params, "find_where")
        return [self._row_to_record(collection, row) for row in rows]

    def count_where(self, collection: str, where: Where) -> int:
        clause, params = self._compile_where(collection, where)
        sql = f"SELECT COUNT(*) AS total FROM `{self._table(collection)}` WHERE {clause}"
        rows = self._run(sql, params, "count_where")
        return int(rows[0]["total"]) if rows else 0

    def insert(self, collection: str, record: Dict[str, Any]) -> None:
        record = dict(record)
        record.setdefault("id", uuid.uuid4().hex)
        columns, attributes = self._split(collection, record)
        declared = TABLE_COLUMNS[collection]

        names = list(columns.keys()) + [ATTRIBUTES_COLUMN]
        params = [_param(k, v, declared[k]) for k, v in columns.items()]
        params.append(bigquery.ScalarQueryParameter(
            ATTRIBUTES_COLUMN, "STRING", json.dumps(attributes, default=str)
        ))
        sql = (
            f"INSERT INTO `{self._table(collection)}` ({', '.join(names)}) "
            f"VALUES ({', '.join('@' + n for n in names)})"
        )
        self._run(sql, params, "insert")

    def upsert(self, collection: str, record_id: str, fields: Dict[str, Any]) -> None:
        fields = {k: v for k, v in fields.items() if k != "id"}
        columns, attributes = self._split(collection, fields)
        declared = TABLE_COLUMNS[collection]

        if attributes:
            existing = self.find_by_id(collection, record_id) or {}
            _, current = self._split(collection, existing)
            current.update(attributes)
            columns[ATTRIBUTES_COLUMN] = json.dumps(current, default=str)

        if not columns:
            return

        params = [bigquery.ScalarQueryParameter("id", "STRING", record_id)]
        for key, value in columns.items():
            if key == ATTRIBUTES_COLUMN:
                params.append(bigquery.ScalarQueryParameter(key, "STRING", value))
            else:
                params.append(_param(key, value, declared[key]))

        set_clause = ", ".join(f"{k} = @{k}" for k in columns)
        insert_names = ["id"] + list(columns.keys())
        sql = f"""
        MERGE `{self._table(collection)}` AS target
        USING (SELECT @id AS id) AS source
        ON target.id = source.id
        WHEN MATCHED THEN
            UPDATE SET {set_clause}
        WHEN NOT MATCHED THEN
            INSERT ({', '.join(insert_names)})
            VALUES ({', '.join('@' + n for n in insert_names)})
        """
        self._run(sql, params, "upsert")
