"""
Logging setup for the forward CLI.

Log records go to stderr so that the instructions printed on stdout stay
readable. At the default WARNING level only problems show up; ``--verbose``
switches to DEBUG, which includes every remote command, every squeue poll
and the exact ssh command line of each hop.
"""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# paramiko logs every channel open at INFO
NOISY_LOGGERS = (
    "paramiko",
    "paramiko.transport",
    "paramiko.transport.sftp",
)


def configure_logging(
    level: int = logging.WARNING,
    use_rich: bool = True,
    console: Optional[Console] = None,
) -> None:
    """Install a single root handler at ``level``.

    Args:
        level: Level for the ``forward`` loggers and the root logger.
        use_rich: Use a :class:`rich.logging.RichHandler`; otherwise a plain
            stream handler prefixed with the logger name.
        console: Console for the Rich handler (defaults to stderr).
    """
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(level)
    logging.getLogger("forward").setLevel(level)

    handler: logging.Handler
    if use_rich:
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=level <= logging.DEBUG,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
