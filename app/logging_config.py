import logging
import sys

from pythonjsonlogger import jsonlogger


_configured = False


def configure_logging(level: str = "INFO") -> None:
    """
    Send every `app.*` log record to stdout as one JSON object per line.

    Context passed through `extra=` (batch_id, lead_id, call_id, ...) ends
    up as top-level JSON keys. Safe to call more than once.
    """
    global _configured

    root = logging.getLogger("app")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    )
    root.addHandler(handler)
    root.propagate = False
    _configured = True
