import logging
import sys


logger = logging.getLogger("repocache")

HANDLER_NAME = "repocache-cli"

# GitPython logs every spawned command at DEBUG; only show it in debug mode
_NOISY_LOGGERS = ("git.cmd", "git.repo.base", "filelock")


def configure_logging(debug: bool):
    """
    Route repocache logs to the current stdout.

    Normal mode prints bare messages at INFO. Debug mode prints DEBUG records with
    their level and logger name and lets the git/filelock libraries log too.
    """
    for handler in [h for h in logger.handlers if h.get_name() == HANDLER_NAME]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    fmt = "%(levelname)s %(name)s: %(message)s" if debug else "%(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)
