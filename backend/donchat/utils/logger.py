"""Logging setup that survives Unicode/emoji in log records."""
import logging
import sys
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

_configured = False


class SafeStreamHandler(logging.StreamHandler):
    """
    Stream handler that never raises on characters the console cannot encode.
    Chat content is full of emojis and Windows consoles default to charmap.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            try:
                self.stream.write(msg + self.terminator)
            except (UnicodeEncodeError, UnicodeDecodeError):
                encoding = getattr(self.stream, "encoding", None) or "ascii"
                self.stream.write(
                    msg.encode(encoding, errors="replace").decode(encoding) + self.terminator
                )
            self.flush()
        except Exception:
            self.handleError(record)


def configure_logging(level: str = "INFO", stream: Optional[Any] = None) -> None:
    """Install the safe handler on the ``donchat`` logger once per process."""
    global _configured

    # Configure UTF-8 encoding for Windows console
    if sys.platform == "win32" and hasattr(sys.stdout, "reconfigure"):
        try:
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
        except (OSError, ValueError):
            pass

    root = logging.getLogger("donchat")
    root.setLevel(level.upper())
    if _configured:
        return

    handler = SafeStreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    if not name.startswith("donchat"):
        name = f"donchat.{name}"
    return logging.getLogger(name)


def safe_repr(obj: Any) -> str:
    """
    Safe representation function that handles Unicode characters.
    """
    try:
        return repr(obj)
    except (UnicodeEncodeError, UnicodeDecodeError):
        try:
            return str(obj).encode("ascii", errors="replace").decode("ascii")
        except Exception:
            return "<Unable to represent object>"
