from yacs.config import CfgNode as CN

from .base import OpReqType
from .common import log
from .context import context

_C = CN()

_C.ENGINE = CN()
# "reference" runs in-process on numpy, "native" loads libmxnet.
_C.ENGINE.BACKEND = "reference"
_C.ENGINE.LIB_PATH = ""

_C.LOG = CN()
_C.LOG.LEVEL = "INFO"
_C.LOG.ALLOWS = [log.ROOT_NAME]
_C.LOG.DISABLES = []

_C.CONTEXT = CN()
_C.CONTEXT.DEVICE_TYPE = "cpu"
_C.CONTEXT.DEVICE_ID = 0

_C.BIND = CN()
_C.BIND.DEFAULT_GRAD_REQ = "write"
_C.BIND.DTYPE = "float32"

_BACKENDS = ("reference", "native")

def get_cfg_defaults():
    """Get a yacs CfgNode object with default values for mxsym."""
    # Return a clone so that the defaults will not be altered
    return _C.clone()

def load_cfg(yaml_file=None, opts=None):
    """ Defaults merged with an optional YAML file and KEY VALUE list. """
    cfg = get_cfg_defaults()
    if yaml_file:
        cfg.merge_from_file(yaml_file)
    if opts:
        cfg.merge_from_list(list(opts))
    validate_cfg(cfg)
    cfg.freeze()
    return cfg

def validate_cfg(cfg):
    if cfg.ENGINE.BACKEND not in _BACKENDS:
        raise ValueError("ENGINE.BACKEND must be in %s, got %s" % (
            _BACKENDS, cfg.ENGINE.BACKEND))
    log.name2level(cfg.LOG.LEVEL)
    context(cfg.CONTEXT.DEVICE_TYPE, cfg.CONTEXT.DEVICE_ID)
    OpReqType.parse(cfg.BIND.DEFAULT_GRAD_REQ)

def create_engine(cfg):
    if cfg.ENGINE.BACKEND == "native":
        from ._ctypes.engine import NativeEngine
        return NativeEngine(cfg.ENGINE.LIB_PATH or None)
    from .engine.reference import ReferenceEngine
    return ReferenceEngine()

def default_context(cfg):
    return context(cfg.CONTEXT.DEVICE_TYPE, cfg.CONTEXT.DEVICE_ID)

def init_logging(cfg):
    return log.Init(cfg.LOG.LEVEL,
                    allows=tuple(cfg.LOG.ALLOWS),
                    disables=tuple(cfg.LOG.DISABLES))
