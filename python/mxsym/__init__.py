""" mxsym: symbolic graph facade over a computation-graph engine. """
from .libinfo import __VERSION__ as __version__

from .base import MXSymError, EngineError, InvalidSymbolError
from .base import ShapeInferenceError, BindError, OpReqType
from .context import Context, context, cpu, gpu, cpu_pinned
from .engine import Engine, ReferenceEngine
from .ndarray import NDArray
from .executor import Executor
from .symbol import Symbol, SymBlob, ShapeInferenceResult, ExecutorArrays
from .symbol import var, Variable
from . import ndarray as nd
from . import symbol as sym
from . import session
from . import config
