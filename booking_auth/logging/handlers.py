"""File handlers used by the logging configuration."""

from __future__ import annotations

import os
from contextlib import suppress
from io import TextIOWrapper
from logging.handlers import WatchedFileHandler

LOG_FILE_PERMISSIONS = 0o600


class SecureWatchedFileHandler(WatchedFileHandler):
    """Watched file handler that keeps log files readable by the owner only.

    Auth logs carry user ids and client addresses, so the file mode is reset
    every time the handler (re)opens the file after rotation.
    """

    def _open(self) -> TextIOWrapper:  # noqa: D401
        stream = super()._open()
        with suppress(OSError):
            os.chmod(self.baseFilename, LOG_FILE_PERMISSIONS)
        return stream
