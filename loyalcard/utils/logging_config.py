"""
Logging setup for loyalcard.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure root logging once per process (level from LOG_LEVEL)."""
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    # SQL echo is far too chatty outside of debugging sessions
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    _configured = True
