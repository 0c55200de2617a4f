"""Translate loosely-typed list and get parameters into store queries.

Parameters arrive the way a request layer sees them: ``where``, ``sort`` and
``select`` as JSON text (or already-decoded mappings), ``skip`` and ``limit``
as strings or ints, ``count`` as a bool or ``"true"``. Everything is decoded and
validated here so malformed input fails before the store is touched.
"""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from taskroster.core import db_client
from taskroster.core.errors import ErrorCode, InvalidArgumentError


logger = logging.getLogger(__name__)

_INTEGER_PATTERN = re.compile(r"^\s*-?\d+\s*$")


class ListQuery(BaseModel):
    """Validated list query."""

    where: dict[str, Any] = Field(default_factory=dict, description="Filter document")
    sort: dict[str, Any] | None = Field(default=None, description="Sort document")
    select: dict[str, Any] | None = Field(default=None, description="Projection document")
    skip: int = Field(default=0, ge=0, description="Number of matching records to skip")
    limit: int | None = Field(default=None, ge=0, description="Maximum records to return; None or 0 is unbounded")
    count: bool = Field(default=False, description="Return the number of matches instead of records")


def _decode_json_param(value: Any, name: str) -> dict[str, Any] | None:
    if value is None:
        return None

    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            raise InvalidArgumentError(f"Invalid JSON in '{name}' parameter", code=ErrorCode.ERR_INVALID_QUERY) from e
    else:
        decoded = value

    if decoded is None:
        return None
    if not isinstance(decoded, Mapping):
        raise InvalidArgumentError(f"'{name}' parameter must be a JSON object", code=ErrorCode.ERR_INVALID_QUERY)
    return dict(decoded)


def _parse_int_param(value: Any, name: str) -> int | None:
    if value is None or value == "":
        return None

    if isinstance(value, int) and not isinstance(value, bool):
        number = value
    elif isinstance(value, str) and _INTEGER_PATTERN.match(value):
        number = int(value)
    else:
        raise InvalidArgumentError(f"Invalid '{name}' parameter: expected an integer", code=ErrorCode.ERR_INVALID_QUERY)

    if number < 0:
        raise InvalidArgumentError(f"Invalid '{name}' parameter: must not be negative", code=ErrorCode.ERR_INVALID_QUERY)
    return number


def parse_bool_param(value: Any) -> bool:
    """Interpret a flag parameter; only True and "true" (any case) are true."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def parse_select(select: Any) -> dict[str, Any] | None:
    """Decode and validate a projection parameter.

    Raises:
        InvalidArgumentError: If the projection is not valid JSON or not a valid projection
    """
    document = _decode_json_param(select, "select")
    try:
        db_client.parse_projection(document)
    except ValueError as e:
        raise InvalidArgumentError(f"Invalid 'select' parameter: {e}", code=ErrorCode.ERR_INVALID_QUERY) from e
    return document


def parse_list_query(
    *,
    where: Any = None,
    sort: Any = None,
    select: Any = None,
    skip: Any = None,
    limit: Any = None,
    count: Any = None,
    default_limit: int | None = None,
) -> ListQuery:
    """Decode and validate list parameters.

    Args:
        where: Filter document or its JSON text
        sort: Sort document or its JSON text
        select: Projection document or its JSON text
        skip: Records to skip
        limit: Maximum records to return
        count: Count-only flag
        default_limit: Limit applied when none is supplied and count is false

    Returns:
        Validated ListQuery

    Raises:
        InvalidArgumentError: If any parameter is malformed
    """
    where_doc = _decode_json_param(where, "where")
    sort_doc = _decode_json_param(sort, "sort")
    select_doc = parse_select(select)
    skip_value = _parse_int_param(skip, "skip")
    limit_value = _parse_int_param(limit, "limit")
    count_only = parse_bool_param(count)

    try:
        db_client.parse_filter(where_doc)
    except ValueError as e:
        raise InvalidArgumentError(f"Invalid 'where' parameter: {e}", code=ErrorCode.ERR_INVALID_QUERY) from e

    try:
        db_client.parse_sort(sort_doc)
    except ValueError as e:
        raise InvalidArgumentError(f"Invalid 'sort' parameter: {e}", code=ErrorCode.ERR_INVALID_QUERY) from e

    if limit_value is None and not count_only:
        limit_value = default_limit

    return ListQuery(
        where=where_doc or {},
        sort=sort_doc,
        select=select_doc,
        skip=skip_value or 0,
        limit=limit_value,
        count=count_only,
    )


async def run_list_query(*, collection: str, query: ListQuery) -> list[dict[str, Any]] | int:
    """Execute a validated list query against a collection.

    Returns the number of matches when ``query.count`` is set (sort,
    projection, skip and limit are ignored), otherwise the matching records.
    """
    if query.count:
        return await db_client.count_records(collection=collection, filter_query=query.where)

    logger.debug("Running list query", extra={"collection": collection, "limit": query.limit, "skip": query.skip})
    return await db_client.list_records(
        collection=collection,
        filter_query=query.where,
        sort=query.sort,
        fields=query.select,
        skip=query.skip,
        limit=query.limit,
    )
