"""
Observability: structured logging and request IDs.

Usage:
    from tfs_hours.observability import configure_logging, RequestContext

    configure_logging(settings.log_level, settings.log_json)

    with RequestContext() as ctx:
        logger.info("Ingest started")  # JSON lines carry request_id
"""

from .context import RequestContext, generate_request_id, get_request_id
from .logging import HumanFormatter, JSONFormatter, configure_logging
from .middleware import AccessLogMiddleware, CorrelationIdMiddleware

__all__ = [
    "RequestContext",
    "generate_request_id",
    "get_request_id",
    "HumanFormatter",
    "JSONFormatter",
    "configure_logging",
    "AccessLogMiddleware",
    "CorrelationIdMiddleware",
]
