""" Logging helpers for the symbol wrapper.

    Every component logs under the ``mxsym`` namespace, e.g.
    ``mxsym.symbol`` or ``mxsym.engine.reference``. Handle allocation
    and release are reported at TRACE level, which sits below DEBUG.
"""
import logging

TRACE = logging.DEBUG // 2
DEBUG = logging.DEBUG
INFO = logging.INFO
WARN = logging.WARNING
ERROR = logging.ERROR
FATAL = logging.CRITICAL

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(DEBUG, "DEBUG")
logging.addLevelName(INFO,  "INFO")
logging.addLevelName(WARN,  "WARN")
logging.addLevelName(ERROR, "ERROR")
logging.addLevelName(FATAL, "FATAL")

LOG_LEVELS = [TRACE, DEBUG, INFO, WARN, ERROR, FATAL]
LOG_NAMES = [logging.getLevelName(l).strip() for l in LOG_LEVELS]

ROOT_NAME = "mxsym"

def level2name(log_level):
    assert log_level in LOG_LEVELS
    return LOG_NAMES[LOG_LEVELS.index(log_level)]

def name2level(log_name):
    log_name = log_name.upper()
    if log_name == "WARNING":
        log_name = "WARN"
    if log_name not in LOG_NAMES:
        raise ValueError("Unknown log level name: %s" % log_name)
    return LOG_LEVELS[LOG_NAMES.index(log_name)]

def get_logger(component):
    return logging.getLogger("%s.%s" % (ROOT_NAME, component))


class ColorFormatter(logging.Formatter):
    def __init__(self, fmt=None, datefmt=None, style='%'):
        super(ColorFormatter, self).__init__(fmt, datefmt, style)

        self._colors = {
            "TRACE": "\033[38;5;111m",
            "DEBUG": "\033[38;5;111m",
            "INFO": "\033[38;5;47m",
            "WARN": "\033[38;5;178m",
            "ERROR": "\033[38;5;196m",
            "FATAL": "\033[30;48;5;196m",
        }
        self._default = "\033[38;5;15m"
        self._reset = "\033[0m"

    def format(self, record):
        message = super(ColorFormatter, self).format(record)
        log_color = self._colors.get(record.levelname, self._default)
        return log_color + message + self._reset

class FilterList(logging.Filter):
    """ Filter records by dotted logger name.

        Rules, from strongest to weakest:
            {allow|disable logger name} > level no > keywords >
            {inheritance from parent logger name} > default
    """
    _RULE = "_internal_filter_rule"

    def __init__(self, default=False, allows=(), disables=(),
            keywords=(), log_level=logging.INFO):
        super(FilterList, self).__init__()
        self.log_level = log_level
        self.keywords = list(keywords)

        self.rules = {self._RULE: default}
        for name in allows:
            self._node(name)[self._RULE] = True
        for name in disables:
            self._node(name)[self._RULE] = False

    def _node(self, name):
        rules = self.rules
        for split in name.split("."):
            rules = rules.setdefault(split, {})
        return rules

    def filter(self, record):
        rules = self.rules
        rv = rules[self._RULE]

        for split in record.name.split("."):
            if split not in rules:
                if record.levelno >= self.log_level:
                    return True
                for keyword in self.keywords:
                    if keyword in record.getMessage():
                        return True
                return rv
            rules = rules[split]
            rv = rules.get(self._RULE, rv)
        return rv

def Init(log_level=INFO, allows=(ROOT_NAME,), disables=()):
    """ Install the colour formatter and name filter on root handlers. """
    if isinstance(log_level, str):
        log_level = name2level(log_level)
    assert log_level in LOG_LEVELS
    logging.basicConfig(level=log_level)
    logging.getLogger().setLevel(log_level)
    formatter = ColorFormatter(
            fmt="[ %(asctime)s %(name)20s %(levelname)5s ] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S")

    log_filter = FilterList(
                log_level=log_level, default=False,
                allows=allows, disables=disables)
    for handler in logging.root.handlers:
        handler.addFilter(log_filter)
        handler.setFormatter(formatter)
    return log_filter
