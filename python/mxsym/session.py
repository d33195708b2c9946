""" Engine session.

    Constructors accept an explicit ``engine=`` argument. When it is
    omitted they fall back to the session engine, which must be set up
    with :func:`init` and is torn down with :func:`shutdown`. Engines
    form a stack so that :func:`use` can swap one in temporarily:

    >>> from mxsym import session
    >>> session.init(ReferenceEngine())
    >>> with session.use(other_engine):
    ...     x = Symbol.variable("x")    # bound to other_engine

    Each session also carries the configuration it was set up with.
    Bind defaults (gradient mode, dtype) and the default device are
    read from :func:`current_cfg`, which falls back to the package
    defaults when no session holds one.
"""
import threading

from .common.log import get_logger

logger = get_logger("session")


class EngineSession:
    _current_session = None
    _lock = threading.Lock()

    def __init__(self, engine, cfg=None):
        self.engine = engine
        self.cfg = cfg
        self.old_session = None

    def __enter__(self):
        return self.engine

    def __exit__(self, *args):
        EngineSession.restore()

    @staticmethod
    def set_global(engine, reuse=True, cfg=None):
        with EngineSession._lock:
            old_session = EngineSession._current_session
            # engine not change, derived from old session
            if reuse and old_session is not None and \
                    old_session.engine is engine:
                if cfg is not None:
                    old_session.cfg = cfg
                return old_session

            if cfg is None and old_session is not None:
                cfg = old_session.cfg
            new_session = EngineSession(engine, cfg)
            new_session.old_session = old_session
            EngineSession._current_session = new_session
        logger.debug("session engine set to %s", engine)
        return new_session

    @staticmethod
    def restore():
        with EngineSession._lock:
            curr_session = EngineSession._current_session
            if curr_session is None:
                raise RuntimeError("No session engine can be restored")
            EngineSession._current_session = curr_session.old_session
            return curr_session.old_session

    @staticmethod
    def current():
        session = EngineSession._current_session
        if session is None:
            raise RuntimeError(
                "No engine given and no session engine initialized, "
                "call mxsym.session.init first")
        return session.engine

    @staticmethod
    def current_cfg():
        session = EngineSession._current_session
        return None if session is None else session.cfg


def init(engine=None, cfg=None):
    """ Push ``engine`` (or the one built from ``cfg``) as session engine.

        A given ``cfg`` is kept by the session and its logging section
        is applied.
    """
    from . import config as _config
    if cfg is not None:
        _config.validate_cfg(cfg)
        _config.init_logging(cfg)
    if engine is None:
        engine = _config.create_engine(
            cfg if cfg is not None else _config.get_cfg_defaults())
    EngineSession.set_global(engine, cfg=cfg)
    return engine

def use(engine, cfg=None):
    return EngineSession.set_global(engine, reuse=False, cfg=cfg)

def current():
    return EngineSession.current()

def current_cfg():
    """ Configuration of the current session, else the defaults. """
    cfg = EngineSession.current_cfg()
    if cfg is None:
        from .config import get_cfg_defaults
        cfg = get_cfg_defaults()
    return cfg

def restore():
    return EngineSession.restore()

def shutdown():
    """ Drop every session engine. """
    with EngineSession._lock:
        EngineSession._current_session = None
    logger.debug("session engines dropped")

def resolve(engine=None):
    return engine if engine is not None else EngineSession.current()
