"""Logging setup: custom TRACE level and per-logger verbosity."""

import logging

# Custom TRACE level
logging.TRACE = 5
logging.addLevelName(logging.TRACE, "TRACE")


# Add trace method to standard Logger class for all instances
def trace_method(self, msg, *args, **kwargs):
    if self.isEnabledFor(logging.TRACE):
        self._log(logging.TRACE, msg, args, **kwargs)


logging.Logger.trace = trace_method


def configure_logging(log_level: str) -> None:
    """Configure the root logger once; later calls are no-ops."""
    log_level_str = log_level.upper()
    level = logging.TRACE if log_level_str == "TRACE" else getattr(logging, log_level_str, logging.INFO)
    if logging.getLogger().hasHandlers():
        return

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'
    )
    root = logging.getLogger()

    # VERBOSE: HTTP details and connector traces for debugging
    if log_level_str == "VERBOSE":
        root_level = logging.DEBUG
        http_level = logging.DEBUG
        connectors_level = logging.TRACE
        services_level = logging.DEBUG
        root.info("VERBOSE mode enabled: HTTP details and connector traces active for debugging.")
    elif log_level_str == "TRACE":
        root_level = http_level = connectors_level = services_level = logging.TRACE
    else:
        root_level = level
        http_level = logging.WARNING
        connectors_level = logging.DEBUG if level <= logging.DEBUG else level
        services_level = root_level

    root.setLevel(root_level)
    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("apscheduler").setLevel(max(http_level, logging.INFO))
    logging.getLogger("boardsync.connectors").setLevel(connectors_level)
    logging.getLogger("boardsync.services").setLevel(services_level)

    if log_level_str == "TRACE":
        root.trace("Trace logging enabled at startup (verbose details).")
    else:
        root.debug("Debug logging enabled at startup.")
