"""
Helpers for logging and formatting exceptions raised while talking to the
upstream API or the file system. Neither helper ever raises.
"""

import logging


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back when __str__ or __repr__ fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception for a client-facing error payload.

    httpx transport errors frequently carry an empty message (e.g. a bare
    ReadTimeout), in which case the exception type name is used instead.
    Exception groups list their sub-exceptions.

    Args:
        exception: The exception to format

    Returns:
        A non-empty description of the exception
    """
    if exception is None:
        return "None"

    message = _safe_str(exception) or type(exception).__name__
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return message

    parts = []
    for sub_exc in sub_exceptions:
        parts.append(f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}")
    return f"{message} (Sub-exceptions: {'; '.join(parts)})"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, one record per sub-exception for
    exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[API-Proxy]", "[Static]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        sub_exceptions = _sub_exceptions(exception)

        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {format_exception_message(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
            f"{_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            logger.log(
                level,
                f"{safe_prefix} Sub-exception {i+1}: "
                f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                exc_info=sub_exc,
            )
    except Exception:
        # Logging must never turn a handled request error into a crash
        try:
            logger.log(logging.ERROR, f"{prefix} Exception (logging failed)")
        except Exception:
            pass
