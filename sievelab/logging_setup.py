import logging
import os


def configure_logging(level=None):
    """Install a console handler unless logging is already configured."""
    root = logging.getLogger()
    if root.handlers:
        return
    if level is None:
        name = (os.getenv("SIEVELAB_LOG_LEVEL") or "INFO").strip().upper()
        level = getattr(logging, name, logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
