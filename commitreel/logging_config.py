"""commitreel logging configuration.

All modules log through `logging.getLogger(__name__)` under the `commitreel`
namespace. `setup_logging()` is called once by the CLI entrypoint; library use
(tests, embedding) leaves handler configuration to the host application.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure commitreel logging.

    Args:
        level: Optional override for `COMMITREEL_LOG_LEVEL`.
    """
    if level:
        os.environ["COMMITREEL_LOG_LEVEL"] = level

    resolved = os.getenv("COMMITREEL_LOG_LEVEL", "INFO").upper()
    root = logging.getLogger("commitreel")
    root.setLevel(getattr(logging, resolved, logging.INFO))

    if not any(getattr(h, "_commitreel", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
        handler._commitreel = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.propagate = False
