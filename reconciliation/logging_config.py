import logging

LOG_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s: %(message)s"

_console_handler = None


def configure_logging(level: str = "INFO") -> logging.Handler:
    """Attach one console handler to the root logger; later calls reuse it."""
    global _console_handler
    root = logging.getLogger()
    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_console_handler)
        root.setLevel(level.upper())
    return _console_handler
