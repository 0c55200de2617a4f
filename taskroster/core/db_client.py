"""SQLite document store client with CRUD, query and field-set operations.

Every collection is a table of JSON documents keyed by a 24-character hex id.
Filters use a MongoDB-style subset that is compiled to SQL over ``json_extract``
and ``json_each``; field names are validated before being embedded.
"""

import asyncio
import json
import logging
import re
import secrets
import threading
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, NamedTuple, NoReturn

import aiosqlite

from taskroster.core.config import settings
from taskroster.core.errors import InternalError


logger = logging.getLogger(__name__)

_RECORD_ID_PATTERN = re.compile(r"^[0-9a-f]{24}$")
_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_ID_FIELDS = frozenset({"id", "_id"})
_SCALAR_TYPES = (str, int, float, bool)
_COMPARISON_OPERATORS = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}
_LOGICAL_OPERATORS = {"$and": " AND ", "$or": " OR ", "$nor": " OR "}
_SORT_DIRECTIONS = {1: "ASC", -1: "DESC", "asc": "ASC", "ascending": "ASC", "desc": "DESC", "descending": "DESC"}


class DatabaseError(InternalError):
    """Raised when a store operation fails."""


class RecordNotFoundError(DatabaseError):
    """Raised when a record id does not exist in its collection."""


class DuplicateRecordError(DatabaseError):
    """Raised when a write violates a unique index."""


class Projection(NamedTuple):
    """Normalized field projection."""

    inclusive: bool
    fields: frozenset[str]
    keep_id: bool


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not _NAME_PATTERN.match(collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_name(field: str) -> None:
    """Validate that a document field name is safe to embed in a JSON path."""
    if not isinstance(field, str) or not _NAME_PATTERN.match(field):
        msg = f"Invalid field name: {field!r}"
        raise ValueError(msg)


def new_record_id() -> str:
    """Generate a new record id."""
    return secrets.token_hex(12)


def is_valid_record_id(record_id: object) -> bool:
    """Return True if the value has the shape of a record id."""
    return isinstance(record_id, str) and bool(_RECORD_ID_PATTERN.match(record_id))


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def _encode_document(data: Mapping[str, Any]) -> str:
    """Serialize a document, dropping id keys which live in their own column."""
    return json.dumps({k: v for k, v in data.items() if k not in _ID_FIELDS}, default=_json_default)


def _row_to_record(row: tuple[str, str]) -> dict[str, Any]:
    record_id, document = row
    return {"id": record_id, **json.loads(document)}


# Filter compilation


def _field_expression(field: str) -> str:
    if field in _ID_FIELDS:
        return "id"
    _validate_field_name(field)
    return f"json_extract(data, '$.{field}')"


def _check_scalar(value: Any, *, allow_null: bool = True) -> Any:
    if value is None and allow_null:
        return value
    if not isinstance(value, _SCALAR_TYPES):
        msg = f"Invalid filter value: {value!r}"
        raise ValueError(msg)
    return value


def _membership(field: str, values: list[Any]) -> tuple[str, list[Any]]:
    """Match when the field equals any of the values, or is a list containing one of them."""
    for value in values:
        _check_scalar(value)

    if field in _ID_FIELDS:
        ids = [v for v in values if v is not None]
        if not ids:
            return "0", []
        return f"id IN ({', '.join('?' for _ in ids)})", ids

    _validate_field_name(field)
    non_null = [v for v in values if v is not None]
    clauses = []
    params: list[Any] = []
    if non_null:
        placeholders = ", ".join("?" for _ in non_null)
        clauses.append(
            f"EXISTS (SELECT 1 FROM json_each(data, '$.{field}') WHERE json_each.value IN ({placeholders}))"
        )
        params.extend(non_null)
    if len(non_null) != len(values):
        clauses.append(f"json_extract(data, '$.{field}') IS NULL")

    if not clauses:
        return "0", []
    return f"({' OR '.join(clauses)})", params


def _compile_operator(field: str, op: str, operand: Any) -> tuple[str, list[Any]]:
    if op == "$eq":
        return _membership(field, [operand])

    if op == "$ne":
        clause, params = _membership(field, [operand])
        return f"NOT {clause}", params

    if op in ("$in", "$nin"):
        if not isinstance(operand, list):
            msg = f"Operator {op} on {field} requires a list"
            raise ValueError(msg)
        clause, params = _membership(field, operand)
        return (clause, params) if op == "$in" else (f"NOT {clause}", params)

    if op in _COMPARISON_OPERATORS:
        value = _check_scalar(operand, allow_null=False)
        return f"{_field_expression(field)} {_COMPARISON_OPERATORS[op]} ?", [value]

    if op == "$exists":
        if not isinstance(operand, bool):
            msg = f"Operator $exists on {field} requires a boolean"
            raise ValueError(msg)
        if field in _ID_FIELDS:
            return ("1" if operand else "0"), []
        _validate_field_name(field)
        null_check = "IS NOT NULL" if operand else "IS NULL"
        return f"json_type(data, '$.{field}') {null_check}", []

    msg = f"Unsupported operator: {op}"
    raise ValueError(msg)


def _compile_condition(field: str, condition: Any) -> tuple[str, list[Any]]:
    if isinstance(condition, Mapping):
        if not condition:
            msg = f"Empty condition for field: {field}"
            raise ValueError(msg)
        clauses = []
        params: list[Any] = []
        for op, operand in condition.items():
            clause, clause_params = _compile_operator(field, op, operand)
            clauses.append(clause)
            params.extend(clause_params)
        return " AND ".join(clauses), params

    return _membership(field, [condition])


def _compile_document(document: Any) -> tuple[str, list[Any]]:
    if not isinstance(document, Mapping):
        msg = "Filter must be an object"
        raise ValueError(msg)

    clauses = []
    params: list[Any] = []
    for key, condition in document.items():
        if key in _LOGICAL_OPERATORS:
            if not isinstance(condition, list) or not condition:
                msg = f"Operator {key} requires a non-empty list"
                raise ValueError(msg)
            parts = [_compile_document(sub) for sub in condition]
            joined = _LOGICAL_OPERATORS[key].join(f"({clause})" for clause, _ in parts)
            clauses.append(f"NOT ({joined})" if key == "$nor" else joined)
            for _, part_params in parts:
                params.extend(part_params)
        elif isinstance(key, str) and key.startswith("$"):
            msg = f"Unsupported operator: {key}"
            raise ValueError(msg)
        else:
            clause, clause_params = _compile_condition(key, condition)
            clauses.append(clause)
            params.extend(clause_params)

    if not clauses:
        return "1", []
    return " AND ".join(f"({clause})" for clause in clauses), params


def parse_filter(filter_query: Mapping[str, Any] | None) -> tuple[str, list[Any]]:
    """Compile a filter document into a SQL WHERE clause and parameter list.

    Raises:
        ValueError: If the filter uses unknown operators, bad field names or bad values
    """
    if filter_query is None:
        return "", []
    clause, params = _compile_document(filter_query)
    if clause == "1":
        return "", []
    return clause, params


def parse_sort(sort: Mapping[str, Any] | None) -> str:
    """Compile a sort document into an ORDER BY clause (insertion order breaks ties).

    Raises:
        ValueError: If a field name or direction is invalid
    """
    if sort is None:
        return "rowid ASC"
    if not isinstance(sort, Mapping):
        msg = "Sort must be an object"
        raise ValueError(msg)

    terms = []
    for field, direction in sort.items():
        key = direction.lower() if isinstance(direction, str) else direction
        if isinstance(key, bool) or not isinstance(key, int | str) or key not in _SORT_DIRECTIONS:
            msg = f"Invalid sort direction for {field}: {direction!r}"
            raise ValueError(msg)
        terms.append(f"{_field_expression(field)} {_SORT_DIRECTIONS[key]}")
    terms.append("rowid ASC")
    return ", ".join(terms)


def parse_projection(fields: Mapping[str, Any] | None) -> Projection | None:
    """Normalize a projection document.

    Raises:
        ValueError: If flags are not 0/1 or inclusion and exclusion are mixed
    """
    if fields is None:
        return None
    if not isinstance(fields, Mapping):
        msg = "Projection must be an object"
        raise ValueError(msg)
    if not fields:
        return None

    keep_id = True
    flags: dict[str, bool] = {}
    for field, flag in fields.items():
        if isinstance(flag, str) or flag not in (0, 1):
            msg = f"Invalid projection flag for {field}: {flag!r}"
            raise ValueError(msg)
        if field in _ID_FIELDS:
            keep_id = bool(flag)
            continue
        _validate_field_name(field)
        flags[field] = bool(flag)

    modes = set(flags.values())
    if len(modes) > 1:
        msg = "Projection cannot mix inclusion and exclusion"
        raise ValueError(msg)

    inclusive = True in modes if flags else keep_id
    return Projection(inclusive=inclusive, fields=frozenset(flags), keep_id=keep_id)


def project_record(record: dict[str, Any], projection: Projection | None) -> dict[str, Any]:
    """Apply a normalized projection to a record."""
    if projection is None:
        return record

    projected = {"id": record["id"]} if projection.keep_id and "id" in record else {}
    for key, value in record.items():
        if key == "id":
            continue
        if (key in projection.fields) == projection.inclusive:
            projected[key] = value
    return projected


# Connections and transactions


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_connection_loops: dict[tuple[int, int, str], asyncio.AbstractEventLoop] = {}
_connection_locks: dict[aiosqlite.Connection, asyncio.Lock] = {}
_db_lock = asyncio.Lock()
_active_transaction: ContextVar[aiosqlite.Connection | None] = ContextVar("active_transaction", default=None)


def _forget_connection(cache_key: tuple[int, int, str]) -> aiosqlite.Connection | None:
    conn = _db_connections.pop(cache_key, None)
    _connection_loops.pop(cache_key, None)
    _connection_locks.pop(conn, None)
    return conn


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_event_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    # A cached connection is only usable on the live loop that opened it; a new
    # loop can reuse the id() of a dead one
    if cache_key in _db_connections:
        owner_loop = _connection_loops.get(cache_key)
        if owner_loop is loop and not owner_loop.is_closed():
            return _db_connections[cache_key]
        async with _db_lock:
            if _connection_loops.get(cache_key) is not loop:
                _forget_connection(cache_key)
                logger.info("Dropped SQLite connection from a stale event loop", extra={"db_path": str(path)})

    # Create new connection with async lock to prevent races
    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit; multi-statement work goes through transaction()
        conn = await aiosqlite.connect(
            str(path),
            timeout=settings.sqlite_busy_timeout_seconds,
            isolation_level=None,
        )
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn
        _connection_loops[cache_key] = loop
        _connection_locks[conn] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_event_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key not in _db_connections:
        return

    try:
        async with _db_lock:
            if cache_key in _db_connections:
                conn = _forget_connection(cache_key)
                await conn.close()
                logger.info(
                    "Closed SQLite connection",
                    extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
                )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


@asynccontextmanager
async def _session() -> AsyncIterator[aiosqlite.Connection]:
    """Yield the connection of the open transaction, or the shared connection under its lock."""
    conn = _active_transaction.get()
    if conn is not None:
        yield conn
        return

    conn = await get_connection()
    async with _connection_locks[conn]:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[None]:
    """Run the enclosed store calls as one SQLite transaction.

    Commits on success and rolls back on any exception. Nested use joins the
    outer transaction. ``BEGIN IMMEDIATE`` takes the write lock up front, so
    reads made inside the block (existence and uniqueness checks) cannot be
    invalidated by another writer before the block commits.
    """
    if _active_transaction.get() is not None:
        yield
        return

    conn = await get_connection()
    async with _connection_locks[conn]:
        try:
            await conn.execute("BEGIN IMMEDIATE")
        except Exception as e:
            logger.error("begin_transaction_failed", extra={"error": str(e)})
            msg = f"Failed to begin transaction: {e}"
            raise DatabaseError(msg) from e

        token = _active_transaction.set(conn)
        try:
            yield
        except BaseException:
            if conn.in_transaction:
                await conn.execute("ROLLBACK")
            logger.warning("Rolled back transaction")
            raise
        else:
            try:
                await conn.execute("COMMIT")
            except Exception as e:
                if conn.in_transaction:
                    await conn.execute("ROLLBACK")
                logger.error("commit_transaction_failed", extra={"error": str(e)})
                msg = f"Failed to commit transaction: {e}"
                raise DatabaseError(msg) from e
        finally:
            _active_transaction.reset(token)


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from taskroster.core import schema

    await schema.init_db(db_path=db_path)


def _raise_database_error(*, operation: str, collection: str, error: Exception, **context: object) -> NoReturn:
    if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error):
        logger.error("Table not found", extra={"collection": collection})
        msg = f"Table '{collection}' does not exist. Call init_db() first."
        raise DatabaseError(msg) from error
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(error), **context})
    msg = f"Failed to {operation.replace('_', ' ')} in {collection}: {error}"
    raise DatabaseError(msg) from error


# CRUD


async def create_record(*, collection: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Insert a new document and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        record_id = new_record_id()

        async with _session() as conn:
            query = f"INSERT INTO {collection} (id, data) VALUES (?, ?)"  # noqa: S608 - collection is validated
            await conn.execute(query, (record_id, _encode_document(data)))

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except DatabaseError:
        raise
    except aiosqlite.IntegrityError as e:
        logger.warning("create_record_conflict", extra={"collection": collection, "error": str(e)})
        msg = f"Duplicate record in {collection}: {e}"
        raise DuplicateRecordError(msg) from e
    except Exception as e:
        _raise_database_error(operation="create_record", collection=collection, error=e)
        raise


async def get_record(
    *,
    collection: str,
    record_id: str,
    fields: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Fetch a single document by id, raising RecordNotFoundError if it does not exist."""
    try:
        _validate_collection_name(collection)
        projection = parse_projection(fields)

        async with _session() as conn:
            query = f"SELECT id, data FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (record_id,))
            row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return project_record(_row_to_record(row), projection)
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="get_record", collection=collection, error=e, record_id=record_id)
        raise


async def update_record(*, collection: str, record_id: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Merge fields into a document by id and return the updated document."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)

        async with _session() as conn:
            query = f"UPDATE {collection} SET data = json_patch(data, ?) WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (_encode_document(data), record_id))

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id)
    except DatabaseError:
        raise
    except aiosqlite.IntegrityError as e:
        logger.warning("update_record_conflict", extra={"collection": collection, "record_id": record_id})
        msg = f"Duplicate record in {collection}: {e}"
        raise DuplicateRecordError(msg) from e
    except Exception as e:
        _raise_database_error(operation="update_record", collection=collection, error=e, record_id=record_id)
        raise


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a document by id, raising RecordNotFoundError if it does not exist."""
    try:
        _validate_collection_name(collection)

        async with _session() as conn:
            query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
            cursor = await conn.execute(query, (record_id,))

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="delete_record", collection=collection, error=e, record_id=record_id)
        raise


async def list_records(
    *,
    collection: str,
    filter_query: Mapping[str, Any] | None = None,
    sort: Mapping[str, Any] | None = None,
    fields: Mapping[str, Any] | None = None,
    skip: int = 0,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """List documents with optional filtering, sorting, projection, and pagination.

    A limit of None or 0 returns every matching document.
    """
    try:
        _validate_collection_name(collection)
        where_clause, params = parse_filter(filter_query)
        order_by = parse_sort(sort)
        projection = parse_projection(fields)

        where_sql = f"WHERE {where_clause}" if where_clause else ""
        query = f"SELECT id, data FROM {collection} {where_sql} ORDER BY {order_by} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params = [*params, limit or -1, skip]

        async with _session() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()

        records = [project_record(_row_to_record(row), projection) for row in rows]

        logger.info("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="list_records", collection=collection, error=e)
        raise


async def get_first_record(*, collection: str, filter_query: Mapping[str, Any]) -> dict[str, Any] | None:
    """Return the first document matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, limit=1)
    return records[0] if records else None


async def count_records(*, collection: str, filter_query: Mapping[str, Any] | None = None) -> int:
    """Count documents matching the filter."""
    try:
        _validate_collection_name(collection)
        where_clause, params = parse_filter(filter_query)

        where_sql = f"WHERE {where_clause}" if where_clause else ""
        query = f"SELECT COUNT(*) FROM {collection} {where_sql}"  # noqa: S608 - collection is validated

        async with _session() as conn:
            cursor = await conn.execute(query, params)
            (count,) = await cursor.fetchone()

        logger.info("Counted records", extra={"collection": collection, "count": count})
        return count
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="count_records", collection=collection, error=e)
        raise


# Field-set operations


async def add_to_set(*, collection: str, record_id: str, field: str, value: str) -> None:
    """Append a value to a list field unless it is already present.

    Runs as a single statement. A missing record is a no-op.
    """
    try:
        _validate_collection_name(collection)
        _validate_field_name(field)

        query = (
            f"UPDATE {collection} "  # noqa: S608 - collection and field are validated
            f"SET data = json_insert(json_insert(data, '$.{field}', json('[]')), '$.{field}[#]', ?) "
            f"WHERE id = ? AND NOT EXISTS ("
            f"SELECT 1 FROM json_each({collection}.data, '$.{field}') WHERE json_each.value = ?)"
        )
        async with _session() as conn:
            cursor = await conn.execute(query, (value, record_id, value))

        logger.info(
            "Added to set",
            extra={"collection": collection, "record_id": record_id, "field": field, "changed": cursor.rowcount},
        )
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="add_to_set", collection=collection, error=e, record_id=record_id)
        raise


async def remove_from_set(*, collection: str, record_id: str, field: str, value: str) -> None:
    """Remove every occurrence of a value from a list field.

    Runs as a single statement. A missing record or absent value is a no-op.
    """
    try:
        _validate_collection_name(collection)
        _validate_field_name(field)

        query = (
            f"UPDATE {collection} "  # noqa: S608 - collection and field are validated
            f"SET data = json_set(data, '$.{field}', json(("
            f"SELECT json_group_array(json_each.value) FROM json_each({collection}.data, '$.{field}') "
            f"WHERE json_each.value != ?))) "
            f"WHERE id = ? AND EXISTS ("
            f"SELECT 1 FROM json_each({collection}.data, '$.{field}') WHERE json_each.value = ?)"
        )
        async with _session() as conn:
            cursor = await conn.execute(query, (value, record_id, value))

        logger.info(
            "Removed from set",
            extra={"collection": collection, "record_id": record_id, "field": field, "changed": cursor.rowcount},
        )
    except DatabaseError:
        raise
    except Exception as e:
        _raise_database_error(operation="remove_from_set", collection=collection, error=e, record_id=record_id)
        raise
