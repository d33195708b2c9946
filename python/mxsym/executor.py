""" Executor handle wrapper.

    An executor is returned by :meth:`Symbol.bind` and
    :meth:`Symbol.simple_bind`; the caller owns it and releases it with
    :meth:`Executor.free` or a ``with`` block. An executor collected
    without being freed is released by its finalizer with a warning.
"""
import threading

from .base import MXSymError
from .common.log import get_logger
from .ndarray import NDArray

logger = get_logger("executor")


class Executor(object):
    def __init__(self, handle, symbol, ctx, engine,
                 arg_arrays, grad_arrays, grad_reqs, aux_arrays):
        self.handle = handle
        self.engine = engine
        self.ctx = ctx
        self._symbol = symbol
        self._lock = threading.Lock()
        self.arg_arrays = list(arg_arrays)
        self.grad_arrays = list(grad_arrays)
        self.grad_reqs = list(grad_reqs)
        self.aux_arrays = list(aux_arrays)
        self._outputs = None

    def _check_alive(self):
        if self.handle is None:
            raise MXSymError("executor has been freed")

    @property
    def symbol(self):
        return self._symbol

    @property
    def outputs(self):
        """ Output arrays, refreshed by each :meth:`forward`. """
        self._check_alive()
        if self._outputs is None:
            self._outputs = [
                NDArray(h, self.engine)
                for h in self.engine.executor_outputs(self.handle)]
        return self._outputs

    def forward(self, is_train=False, **kwargs):
        """ Run the graph; keyword arrays are copied into arguments first. """
        self._check_alive()
        if kwargs:
            arg_dict = self.arg_dict
            for name, value in kwargs.items():
                if name not in arg_dict:
                    raise ValueError("Unknown argument %s" % name)
                arg_dict[name].copyfrom(value)
        self.engine.executor_forward(self.handle, is_train)
        return self.outputs

    def backward(self, out_grads=None):
        self._check_alive()
        if out_grads is None:
            out_grads = []
        elif isinstance(out_grads, NDArray):
            out_grads = [out_grads]
        for g in out_grads:
            if not isinstance(g, NDArray):
                raise TypeError(
                    "out_grads only accepts NDArray, got %s" % type(g))
        self.engine.executor_backward(
            self.handle, [g.handle for g in out_grads])

    def _as_dict(self, names, arrays):
        if len(set(names)) != len(names):
            raise ValueError("Duplicate names detected, %s" % str(names))
        return dict(zip(names, arrays))

    @property
    def arg_dict(self):
        return self._as_dict(self._symbol.list_arguments(), self.arg_arrays)

    @property
    def grad_dict(self):
        return self._as_dict(self._symbol.list_arguments(), self.grad_arrays)

    @property
    def aux_dict(self):
        return self._as_dict(
            self._symbol.list_auxiliary_states(), self.aux_arrays)

    @property
    def output_dict(self):
        return self._as_dict(self._symbol.list_outputs(), self.outputs)

    def free(self):
        """ Release the executor handle, later calls are no-ops. """
        with self._lock:
            handle, self.handle = self.handle, None
        if handle is None:
            return
        self._outputs = None
        self.engine.executor_free(handle)
        logger.debug("executor of %s freed", self._symbol)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.free()

    def __del__(self):
        if getattr(self, "handle", None) is None:
            return
        logger.warning("executor of %s collected without free()",
                       self._symbol)
        try:
            self.free()
        except Exception: # pylint: disable=broad-except
            logger.exception("failed to free leaked executor")
