import logging
import os
import sys

DEFAULT_LOG_LEVEL = logging.WARNING
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV_VAR = "LINKSTORE_LOG_LEVEL"


def _resolve_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level

    if level is None:
        level_name = os.environ.get(LOG_LEVEL_ENV_VAR, "").upper()
        source = LOG_LEVEL_ENV_VAR
    else:
        level_name = level.upper()
        source = "log level string"

    if level_name and isinstance(logging.getLevelName(level_name), int):
        return logging.getLevelName(level_name)

    if level_name:
        # Logging is not configured yet, so this goes straight to stderr.
        print(  # noqa: T201
            f"Warning: Invalid {source} '{level_name}'. Defaulting to {logging.getLevelName(DEFAULT_LOG_LEVEL)}.",
            file=sys.stderr,
        )
    return DEFAULT_LOG_LEVEL


def setup_logging(level: int | str | None = None) -> None:
    """
    Set up logging for the link store.

    Args:
        level: The logging level to set. Can be an integer (e.g., logging.INFO),
               a string (e.g., "INFO"), or None. If None, the level is read from
               the LINKSTORE_LOG_LEVEL environment variable, defaulting to
               DEFAULT_LOG_LEVEL.

    """
    log_level = _resolve_level(level)

    app_logger = logging.getLogger("linkstore")
    app_logger.setLevel(log_level)

    # Handlers are rebuilt on every call so they pick up the current sys.stderr,
    # which CliRunner swaps out during tests.
    for handler_to_remove in list(app_logger.handlers):
        app_logger.removeHandler(handler_to_remove)
        handler_to_remove.close()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    app_logger.addHandler(handler)
