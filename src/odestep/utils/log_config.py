import logging
import os
import sys

_DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=None, format_string=_DEFAULT_FORMAT):
    """Configure the ``odestep`` logger to write to stdout.

    The level defaults to the ``ODESTEP_LOG_LEVEL`` environment variable, or
    ``INFO`` when it is unset.  Calling the function again replaces the
    handler installed by a previous call.
    """
    if level is None:
        level = os.environ.get("ODESTEP_LOG_LEVEL", "INFO").upper()
    log = logging.getLogger("odestep")
    for handler in list(log.handlers):
        if getattr(handler, "_odestep_handler", False):
            log.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_string))
    handler._odestep_handler = True
    log.addHandler(handler)
    log.setLevel(level)
    return log


# Create the package logger when this module is imported
logger = setup_logging()
