"""
Structured logging for the operator process using structlog.

Every event carries the operator name and version. Inside a reconcile the
context bound by ``reconcile_context`` (controller, namespace, name,
reconcile id) is merged in and the object key is rendered as a single
``object`` field ("namespace/name"), the way controller-runtime logs it.
"""

import logging
import os
import sys
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from sroperator import __version__

OPERATOR_NAME = "schema-registry-operator"

# Third-party loggers that only speak up at WARNING and above
QUIET_LOGGERS = ("uvicorn.access", "httpx", "kubernetes_asyncio")

EventDict = Dict[str, Any]


def operator_identity(version: str) -> Callable[[Any, str, EventDict], EventDict]:
    """Processor adding ``operator`` and ``operator_version`` to each event"""
    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("operator", OPERATOR_NAME)
        event_dict.setdefault("operator_version", version)
        return event_dict
    return processor


def object_key(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Collapse ``namespace`` + ``name`` into ``object``; partial keys pass through"""
    namespace = event_dict.get("namespace")
    name = event_dict.get("name")
    if namespace and name:
        del event_dict["namespace"], event_dict["name"]
        event_dict["object"] = f"{namespace}/{name}"
    return event_dict


def enum_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render enum members (schema type, target, compatibility level) by value"""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def configure_logging(
    json_output: bool = None,
    log_level: str = None,
    version: Optional[str] = None,
) -> None:
    """
    Configure structured logging for the whole operator process.

    Args:
        json_output: If True, output JSON format. If None, read LOG_FORMAT (default json).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR). If None, read LOG_LEVEL.
        version: Operator version stamped on every event. Defaults to the package version.
    """
    if json_output is None:
        json_output = os.getenv("LOG_FORMAT", "json").lower() == "json"

    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level, logging.INFO)

    processors = [
        structlog.contextvars.merge_contextvars,
        operator_identity(version or __version__),
        object_key,
        enum_values,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structlog logger instance.

    Args:
        name: Logger name, typically __name__ from the calling module.
    """
    return structlog.get_logger(name)


def get_controller_logger(controller: str) -> structlog.BoundLogger:
    """Logger for one controller's watch loop and workers, bound to its name"""
    return get_logger(f"sroperator.controllers.{controller}").bind(controller=controller)
