"""OpenTelemetry spans around individual engine statements.

Spans carry a SHA-256 hash of the SQL text instead of the text itself, so
filter predicates and literals never reach the telemetry backend.
"""

import hashlib
import logging
from typing import Awaitable, Dict, Optional, TypeVar

from opentelemetry import trace

from common.config.env import get_env_bool

T = TypeVar("T")
logger = logging.getLogger(__name__)

TRACER_NAME = "dal"


def trace_enabled() -> bool:
    """Return True when DAL_TRACE_QUERIES asks for statement spans."""
    try:
        return bool(get_env_bool("DAL_TRACE_QUERIES", False))
    except ValueError:
        logger.warning("Invalid DAL_TRACE_QUERIES value; statement tracing disabled.")
        return False


def statement_hash(sql: str) -> str:
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def _statement_attributes(
    provider: str, sql: Optional[str], param_count: Optional[int]
) -> Dict[str, object]:
    attributes: Dict[str, object] = {"db.provider": provider}
    if sql:
        attributes["db.statement_hash"] = statement_hash(sql)
    if param_count is not None:
        attributes["db.param_count"] = param_count
    return attributes


async def trace_query_operation(
    name: str,
    provider: str,
    sql: Optional[str],
    operation: Awaitable[T],
    param_count: Optional[int] = None,
) -> T:
    """Await `operation`, inside a `name` span when tracing is enabled."""
    if not trace_enabled():
        return await operation

    tracer = trace.get_tracer(TRACER_NAME)
    attributes = _statement_attributes(provider, sql, param_count)
    with tracer.start_as_current_span(name, attributes=attributes) as span:
        try:
            result = await operation
        except Exception:
            span.set_attribute("db.status", "error")
            raise
        span.set_attribute("db.status", "ok")
        return result
