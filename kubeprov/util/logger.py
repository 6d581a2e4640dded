"""
Console logging for kubeprov.

Every module does ``LOGGER = Logger(__name__)``. Messages go to STDOUT
with a coloured marker in front::

    [+] success    [~] info    [!] warning    [-] error    [?] question

Join parameters are credentials. Bootstrap token secrets are masked in
every record, and values passed to :func:`register_secret` (certificate
keys) are replaced by ``***`` before anything is written.
"""
import logging
import re
import sys
import time

# pylint: disable=no-name-in-module
from huepy import (bad, red, info as infomsg, yellow, run, grey,
                   que, good, green)

LOG_LEVELS = list(range(5))
DEFAULT_LOG_LEVEL = 3

# kubeprov verbosity -> python level, 0 disables the logger
PYTHON_LEVELS = {1: logging.ERROR,
                 2: logging.WARNING,
                 3: logging.INFO,
                 4: logging.DEBUG}

LEVEL_NAMES = {'quiet': 0, 'error': 1, 'warning': 2, 'info': 3, 'debug': 4}

# <6 character id>.<16 character secret>, only the id is kept
TOKEN_SECRET = re.compile(r"\b([a-z0-9]{6})\.[a-z0-9]{16}\b")

_SECRETS = set()


def register_secret(value):
    """Never print value, e.g. a certificate key"""
    if value:
        _SECRETS.add(value)


def mask_secrets(text):
    """Replace registered secrets and bootstrap token secrets in text"""
    for secret in _SECRETS:
        text = text.replace(secret, "***")

    return TOKEN_SECRET.sub(r"\1.***", text)


class SecretFilter(logging.Filter):
    """Mask secrets in the formatted message of every record."""

    def filter(self, record):
        message = record.getMessage()
        masked = mask_secrets(message)
        if masked != message:
            record.msg, record.args = masked, None
        return True


def get_logger(name):
    """Return the python logger name with a single STDOUT handler."""
    log = logging.getLogger(name)
    set_level(log, Logger.LOG_LEVEL)

    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler.addFilter(SecretFilter())
        log.addHandler(handler)

    return log


def set_level(logger, level):
    """Apply a kubeprov verbosity (0-4) to a python logger.

    Raises:
        ValueError if level is not one of LOG_LEVELS
    """
    if level not in LOG_LEVELS:
        raise ValueError(f"log level {level} is not supported")

    logger.disabled = level == 0
    if level:
        logger.setLevel(PYTHON_LEVELS[level])


class Singleton(type):
    """Calling the class again re-initialises and returns the first
    instance."""
    _instances = {}

    def __call__(cls, *args, **kwargs):
        if cls not in cls._instances:
            cls._instances[cls] = super(Singleton, cls).__call__(*args, **kwargs)
        else:
            cls._instances[cls].__init__(*args, **kwargs)

        return cls._instances[cls]


class Logger(metaclass=Singleton):
    """The kubeprov logger.

    ``Logger.LOG_LEVEL`` is shared by all modules: 0 quiet, 1 error,
    2 warning, 3 info (default), 4 debug. ``--verbosity`` sets it through
    :attr:`level`.

    All methods but :meth:`question` accept ``%``-style arguments, pass
    ``color=False`` for plain output.

    Example:
        >>> log = Logger(__name__)
        >>> log.info("joining %s", "prod-1")
        [~] joining prod-1
    """

    LOG_LEVEL = DEFAULT_LOG_LEVEL

    def __init__(self, name):
        self.logger = get_logger(name)

    @property
    def level(self):
        """the python level of the current logger, 0 if it is disabled"""
        if self.logger.disabled:
            return 0

        return self.logger.level

    @level.setter
    def level(self, level):
        level = LEVEL_NAMES.get(level, level)
        level = int(level)

        Logger.LOG_LEVEL = level
        set_level(self.logger, level)

    def error(self, msg, *args, color=True, **kwargs):
        """``[-]`` in red"""
        if color:
            msg = bad(red(msg))
        self.logger.error(msg, *args, **kwargs)

    def warning(self, msg, *args, color=True, **kwargs):
        """``[!]`` in yellow"""
        if color:
            msg = infomsg(yellow(msg))
        self.logger.warning(msg, *args, **kwargs)

    def info(self, msg, *args, color=True, **kwargs):
        """``[~]`` in grey"""
        if color:
            msg = run(grey(msg))
        self.logger.info(msg, *args, **kwargs)

    def debug(self, msg, *args, color=True, **kwargs):
        """grey, prefixed with a timestamp"""
        if color:
            now = time.strftime("%Y%m%d-%H%M%S")
            msg = grey(f"[{now}] {msg}")
        self.logger.debug(msg, *args, **kwargs)

    def success(self, msg, *args, color=True, **kwargs):
        """``[+]`` in green, on info level"""
        if color:
            msg = good(green(msg))
        self.logger.info(msg, *args, **kwargs)

    @staticmethod
    def question(msg, color=True):
        """Print msg regardless of the log level.

        Used before :func:`kubeprov.cli.confirm` asks for input.
        """
        if color:
            msg = que(msg)

        print(mask_secrets(msg))
