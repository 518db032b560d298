from __future__ import annotations

import logging

from tenantdb.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Apply once per process; later calls only adjust the level.
    resolved = (level or get_settings().log_level).upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    root.setLevel(resolved)
    # botocore logs every request at INFO.
    logging.getLogger("botocore").setLevel(logging.WARNING)
