import logging
import sys

import structlog
from structlog.typing import EventDict

from policy_watcher._version import __version__
from policy_watcher.config import settings

LOGGING_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# IO and broker errors that may succeed on a later connect
TRANSIENT_EXCEPTIONS = (
    OSError,
    ConnectionError,
    TimeoutError,
)

BUG_EXCEPTIONS = (
    AttributeError,
    TypeError,
    KeyError,
    IndexError,
    NameError,
    AssertionError,
    NotImplementedError,
)

TRANSIENT_PATTERNS = [
    "ConnectionError",
    "TimeoutError",
    "Timeout",
    "BusyLoadingError",
]


def add_env_info(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["env"] = settings.ENV
    event_dict["version"] = __version__
    return event_dict


def add_error_processor(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Extend error logs with the fully qualified exception type and its category.
    """
    exc_info = event_dict.get("exc_info")
    if not exc_info:
        return event_dict

    if exc_info is True:
        exc_info = sys.exc_info()
    elif isinstance(exc_info, BaseException):
        exc_info = (type(exc_info), exc_info, exc_info.__traceback__)

    if isinstance(exc_info, tuple) and exc_info[0] is not None:
        exc_type = exc_info[0]
        event_dict["error_type"] = f"{exc_type.__module__}.{exc_type.__name__}"
        event_dict["error_category"] = categorize_exception(exc_type)

    return event_dict


def categorize_exception(exc_type: type) -> str:
    """
    Categorize an exception into TRANSIENT, BUG, or ERROR.

    TRANSIENT: network/broker errors that might succeed on a new connect
    BUG: programming errors, most often raised from a user callback
    ERROR: everything else
    """
    if issubclass(exc_type, TRANSIENT_EXCEPTIONS):
        return "TRANSIENT"
    if issubclass(exc_type, BUG_EXCEPTIONS):
        return "BUG"
    for pattern in TRANSIENT_PATTERNS:
        if pattern in exc_type.__name__:
            return "TRANSIENT"
    return "ERROR"


def setup_logger() -> None:
    """
    Setup the logger with the configured level and renderer
    """
    renderer = structlog.processors.JSONRenderer() if settings.JSON_LOGGING else structlog.dev.ConsoleRenderer()
    additional_processors = (
        [
            structlog.processors.EventRenamer("msg"),
            structlog.processors.CallsiteParameterAdder(
                {
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                }
            ),
        ]
        if settings.JSON_LOGGING
        else []
    )
    log_level = LOGGING_LEVEL_MAP.get(settings.LOG_LEVEL.upper(), logging.INFO)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_env_info,
            add_error_processor,
            structlog.processors.format_exc_info,
        ]
        + additional_processors
        + [renderer],
    )
