from __future__ import annotations

import logging
from typing import Optional

from rich.logging import RichHandler

from livehls.core.settings import env_str


_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Route all service loggers through a single rich console handler.
    Safe to call more than once (uvicorn reload, tests).
    """
    global _configured

    resolved = (level or env_str("LOG_LEVEL", "INFO") or "INFO").upper()
    root = logging.getLogger("livehls")
    root.setLevel(resolved)

    if _configured:
        return

    handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
    root.addHandler(handler)
    root.propagate = False
    _configured = True
