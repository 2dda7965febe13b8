from __future__ import annotations

"""
One-call logging setup for applications embedding the driver.

    from nosqlkit.observability.log_config import setup_logging
    setup_logging(level="INFO", module_levels={"retry": "WARNING"})

Child loggers are named after driver components: `executor`, `retry`,
`rate_limiter`, `poller`, `pagination`, `events`, `client`.
"""

import logging
from collections.abc import Mapping

from ..core.logging import LOGGER_NAME, enable_stdout_logging, set_level

__all__ = ["setup_logging"]


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    pretty: bool = False,
    include_stack: bool = False,
    route_errors_to_stderr: bool = False,
    module_levels: Mapping[str, int | str] | None = None,
) -> None:
    """
    Print driver logs at `level` (JSON unless `pretty`), optionally with
    per-component levels, e.g. `{"retry": "INFO", "poller": "WARNING"}`.
    """
    enable_stdout_logging(
        level=level,
        json_output=json_output,
        include_stack=include_stack,
        pretty=pretty,
        route_errors_to_stderr=route_errors_to_stderr,
    )
    set_level(level)
    for component, lvl in (module_levels or {}).items():
        logging.getLogger(f"{LOGGER_NAME}.{component}").setLevel(lvl.upper() if isinstance(lvl, str) else lvl)
