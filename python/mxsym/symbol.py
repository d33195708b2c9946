"""Symbolic graph construction API.

A :class:`Symbol` is a node or subgraph of a computation graph living
inside an engine. It owns nothing itself: the engine handle is held by a
:class:`SymBlob`, and every ``Symbol`` made from the same handle shares
that blob, so the handle is released once, when the last of them is
collected. Graph operations never mutate a symbol, they return new ones.

>>> a = Symbol.variable("a")
>>> b = Symbol.variable("b")
>>> c = a + b
>>> c.list_arguments()
['a', 'b']
"""
import collections
import threading

from . import session
from .base import BindError, OpReqType, ShapeInferenceError
from .common.log import TRACE, get_logger
from .context import Context
from .executor import Executor
from .ndarray import NDArray, zeros as _nd_zeros

logger = get_logger("symbol")

ShapeInferenceResult = collections.namedtuple(
    "ShapeInferenceResult", ["arg_shapes", "aux_shapes", "out_shapes"])

ExecutorArrays = collections.namedtuple(
    "ExecutorArrays", ["arg_arrays", "grad_arrays", "grad_reqs", "aux_arrays"])


class SymBlob(object):
    """ Exclusive owner of one engine symbol handle.

        The handle is freed through the engine exactly once, either by
        :meth:`release` or when the blob is collected. A null handle is
        passed to the engine as well, whose free is a no-op for it.
    """

    def __init__(self, handle=None, engine=None):
        self._engine = session.resolve(engine)
        self._handle = handle
        self._lock = threading.Lock()
        self._released = False

    @property
    def handle(self):
        return self._handle

    @property
    def engine(self):
        return self._engine

    @property
    def released(self):
        return self._released

    def release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
            handle, self._handle = self._handle, None
        logger.log(TRACE, "release symbol handle %s", handle)
        self._engine.symbol_free(handle)

    def __del__(self):
        if getattr(self, "_released", True):
            return
        try:
            self.release()
        except Exception: # pylint: disable=broad-except
            logger.exception("failed to release symbol handle")

    def __copy__(self):
        raise TypeError("SymBlob owns its handle and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("SymBlob owns its handle and cannot be copied")

    def __reduce__(self):
        raise TypeError("SymBlob owns its handle and cannot be pickled")


class Symbol(object):
    """Symbol is a symbolic graph node held through a shared SymBlob."""
    __slots__ = ["_blob"]

    def __init__(self, handle=None, engine=None, blob=None):
        """ Take ownership of ``handle``, or share an existing ``blob``. """
        if blob is None:
            blob = SymBlob(handle, engine)
        self._blob = blob

    # construction
    @classmethod
    def variable(cls, name="", engine=None):
        """ Create a leaf node; an empty name lets the engine pick one. """
        engine = session.resolve(engine)
        return cls(engine.symbol_create_variable(name), engine)

    @classmethod
    def create_operator(cls, operator_name, name="",
                        input_keys=(), input_values=(),
                        config_keys=(), config_values=(),
                        engine=None):
        """ Apply ``operator_name`` to input symbols.

        Parameters
        ----------
        operator_name : str
            Engine operator name, e.g. ``FullyConnected``.
        name : str
            Node name, empty to let the engine generate one.
        input_keys : list of str
            Argument slot of each input, or empty to wire positionally.
        input_values : list of Symbol
            Input symbols, parallel to ``input_keys`` when given.
        config_keys, config_values : list of str
            Parallel attribute keys and values.
        """
        input_keys, input_values = list(input_keys), list(input_values)
        config_keys, config_values = list(config_keys), list(config_values)
        if input_keys and len(input_keys) != len(input_values):
            raise ValueError(
                "operator %s: %d input keys do not match %d input values" % (
                    operator_name, len(input_keys), len(input_values)))
        if len(config_keys) != len(config_values):
            raise ValueError(
                "operator %s: %d config keys do not match %d config values" % (
                    operator_name, len(config_keys), len(config_values)))
        for value in input_values:
            if not isinstance(value, Symbol):
                raise TypeError(
                    "operator %s: inputs must be Symbol, got %s" % (
                        operator_name, type(value)))

        if engine is None and input_values:
            engine = input_values[0].engine
        engine = session.resolve(engine)
        for value in input_values:
            if value.engine is not engine:
                raise ValueError(
                    "operator %s: input %s belongs to another engine" % (
                        operator_name, value))

        handle = engine.symbol_create_operator(
            operator_name, name,
            [str(k) for k in input_keys],
            [v.handle for v in input_values],
            [str(k) for k in config_keys],
            [_attr_str(v) for v in config_values])
        return cls(handle, engine)

    def _binary(self, op_name, rhs):
        if not isinstance(rhs, Symbol):
            raise TypeError('type %s not supported' % str(type(rhs)))
        return Symbol.create_operator(
            op_name, input_values=[self, rhs], engine=self.engine)

    def __add__(self, other):
        """x.__add__(y) <=> x+y"""
        return self._binary("_Plus", other)

    def __sub__(self, other):
        """x.__sub__(y) <=> x-y"""
        return self._binary("_Minus", other)

    def __mul__(self, other):
        """x.__mul__(y) <=> x*y"""
        return self._binary("_Mul", other)

    def __truediv__(self, other):
        """x.__truediv__(y) <=> x/y"""
        return self._binary("_Div", other)

    def copy(self):
        """ Independent duplicate made by the engine, with its own handle. """
        return Symbol(self.engine.symbol_copy(self.handle), self.engine)

    def __copy__(self):
        # value copy: another holder of the same handle
        return Symbol(blob=self._blob)

    def __deepcopy__(self, memo):
        return self.copy()

    # handle access
    @property
    def handle(self):
        return self._blob.handle

    def get_handle(self):
        """ Underlying engine handle, still owned by this symbol. """
        return self._blob.handle

    @property
    def engine(self):
        return self._blob.engine

    @property
    def name(self):
        return self.engine.symbol_get_name(self.handle)

    def __repr__(self):
        name = self.name
        return '<%s %s>' % (self.__class__.__name__,
                            'Grouped' if name is None else name)

    def debug_str(self):
        lines = ["Symbol %s" % self.name]
        lines.append("  arguments: %s" % ", ".join(self.list_arguments()))
        lines.append("  outputs: %s" % ", ".join(self.list_outputs()))
        lines.append("  auxiliary states: %s" % ", ".join(
            self.list_auxiliary_states()))
        return "\n".join(lines)

    # graph description
    def list_arguments(self):
        """Lists all the arguments in the symbol.

        The position in the returned list is the calling position
        used by :meth:`bind`. Names may be empty strings for
        unnamed arguments.

        Returns
        -------
        args : list of string
            List containing the names of all the arguments required to compute the symbol.
        """
        return list(self.engine.symbol_list_arguments(self.handle))

    def list_outputs(self):
        """Lists all the outputs in the symbol."""
        return list(self.engine.symbol_list_outputs(self.handle))

    def list_auxiliary_states(self):
        """Lists all the auxiliary states in the symbol.

        Auxiliary states are special states of symbols that do not correspond to an argument,
        and are not updated by gradient descent. Common examples of auxiliary states
        include the `moving_mean` and `moving_variance` in `BatchNorm`.
        """
        return list(self.engine.symbol_list_auxiliary_states(self.handle))

    # shape inference
    def _infer_shape_impl(self, arg_shapes, partial):
        keys, shapes = [], []
        for name, shape in arg_shapes.items():
            if isinstance(shape, int):
                shape = (shape,)
            keys.append(name)
            shapes.append(tuple(int(d) for d in shape))
        arg, out, aux, complete = self.engine.symbol_infer_shape(
            self.handle, keys, shapes, partial)
        logger.debug("infer shape of %s from %s: complete=%s",
                     self, dict(zip(keys, shapes)), complete)
        return arg, out, aux, complete

    def infer_shape(self, arg_shapes):
        """Infers the shapes of all arguments and all outputs given the known shapes of
        some arguments.

        Parameters
        ----------
        arg_shapes : dict of str to tuple
            Known argument shapes.

        Returns
        -------
        result : ShapeInferenceResult
            ``arg_shapes``, ``aux_shapes`` and ``out_shapes``, ordered as
            ``list_arguments()``, ``list_auxiliary_states()`` and
            ``list_outputs()``.

        Raises
        ------
        ShapeInferenceError
            If shapes are inconsistent or cannot all be decided.
        """
        arg, out, aux, complete = self._infer_shape_impl(arg_shapes, False)
        if not complete:
            unknowns = [
                "%s: %s" % (name, shape)
                for name, shape in zip(self.list_arguments(), arg)
                if shape == ()]
            raise ShapeInferenceError(
                "Cannot decide shape for the following arguments, "
                "consider providing them as input:\n\t" +
                "\n\t".join(unknowns))
        return ShapeInferenceResult(arg, aux, out)

    def infer_shape_partial(self, arg_shapes):
        """ Same as :meth:`infer_shape` with ``None`` for undecided shapes. """
        arg, out, aux, _ = self._infer_shape_impl(arg_shapes, True)
        def _or_none(shapes):
            return [tuple(s) if s else None for s in shapes]
        return ShapeInferenceResult(
            _or_none(arg), _or_none(aux), _or_none(out))

    # array inference
    def _known_shapes(self, arrays):
        return {name: arr.shape for name, arr in arrays.items()}

    def infer_args_map(self, context, known_args):
        """ Complete ``known_args`` into a map of every argument array.

            Given arrays are reused, missing ones are allocated on
            ``context`` with their inferred shapes.
        """
        _check_arrays("known_args", known_args)
        arg_names = self.list_arguments()
        shapes = self.infer_shape(self._known_shapes(known_args)).arg_shapes
        args_map = {}
        for name, shape in zip(arg_names, shapes):
            if name in known_args:
                args_map[name] = known_args[name]
            else:
                args_map[name] = _nd_zeros(
                    shape, context, engine=self.engine)
        return args_map

    def infer_executor_arrays(self, context, args_map,
                              arg_grad_store=None, grad_req_type=None,
                              default_grad_req=None):
        """Infer and construct all the arrays to bind to executor.

        Parameters
        ----------
        context : Context
            Device of the allocated arrays.
        args_map : dict of str to NDArray
            Known argument arrays, the others are allocated.
        arg_grad_store : dict of str to NDArray, optional
            Gradient arrays to reuse; missing ones are allocated.
        grad_req_type : dict of str to OpReqType, optional
            Gradient mode per argument, ``default_grad_req`` when absent.
        default_grad_req : OpReqType, optional
            Defaults to ``BIND.DEFAULT_GRAD_REQ`` of the session config.

        Returns
        -------
        arrays : ExecutorArrays
            Parallel lists ordered as ``list_arguments()`` plus the
            auxiliary arrays ordered as ``list_auxiliary_states()``.
        """
        arg_grad_store = arg_grad_store or {}
        grad_req_type = grad_req_type or {}
        _check_arrays("args_map", args_map)
        _check_arrays("arg_grad_store", arg_grad_store)
        if default_grad_req is None:
            default_grad_req = session.current_cfg().BIND.DEFAULT_GRAD_REQ
        default_grad_req = OpReqType.parse(default_grad_req)

        arg_names = self.list_arguments()
        result = self.infer_shape(self._known_shapes(args_map))

        arg_arrays, grad_arrays, grad_reqs = [], [], []
        for name, shape in zip(arg_names, result.arg_shapes):
            if name in args_map:
                arg_arrays.append(args_map[name])
            else:
                arg_arrays.append(_nd_zeros(shape, context, engine=self.engine))
            if name in arg_grad_store:
                grad_arrays.append(arg_grad_store[name])
            else:
                grad_arrays.append(
                    _nd_zeros(shape, context, engine=self.engine))
            grad_reqs.append(OpReqType.parse(
                grad_req_type.get(name, default_grad_req)))

        aux_arrays = [_nd_zeros(shape, context, engine=self.engine)
                      for shape in result.aux_shapes]
        return ExecutorArrays(arg_arrays, grad_arrays, grad_reqs, aux_arrays)

    # binding
    def simple_bind(self, context, args_map, arg_grad_store=None,
                    grad_req_type=None, default_grad_req=None):
        """Create an executor, inferring every array not given.

        Returns
        -------
        executor : Executor
            A new executor owned by the caller, who must free it.
        """
        arrays = self.infer_executor_arrays(
            context, args_map, arg_grad_store, grad_req_type,
            default_grad_req)
        return self.bind(context, *arrays)

    def bind(self, context, arg_arrays, grad_arrays, grad_reqs, aux_arrays):
        """Create an executor by binding the symbol with context and arrays.

        Parameters
        ----------
        context : Context
            The device context of binding.
        arg_arrays : list of NDArray
            Argument arrays in ``list_arguments()`` order.
        grad_arrays : list of NDArray or None
            Gradient arrays, None allowed where the request is ``NULL_OP``.
        grad_reqs : list of OpReqType
            Gradient mode per argument.
        aux_arrays : list of NDArray
            Auxiliary arrays in ``list_auxiliary_states()`` order.

        Returns
        -------
        executor : Executor
            A new executor owned by the caller, who must free it.
        """
        if not isinstance(context, Context):
            raise TypeError("Context type error")
        arg_names = self.list_arguments()
        aux_names = self.list_auxiliary_states()
        arg_arrays, grad_arrays = list(arg_arrays), list(grad_arrays)
        grad_reqs, aux_arrays = list(grad_reqs), list(aux_arrays)
        for key, arrays, expect in (
                ("arg_arrays", arg_arrays, len(arg_names)),
                ("grad_arrays", grad_arrays, len(arg_names)),
                ("grad_reqs", grad_reqs, len(arg_names)),
                ("aux_arrays", aux_arrays, len(aux_names))):
            if len(arrays) != expect:
                raise BindError(
                    "Length of %s (%d) does not match the %d expected" % (
                        key, len(arrays), expect))
        try:
            grad_reqs = [OpReqType.parse(r) for r in grad_reqs]
        except ValueError as err:
            raise BindError(str(err)) from err

        def _handles(key, arrays, allow_none=False):
            handles = []
            for arr in arrays:
                if arr is None and allow_none:
                    handles.append(None)
                elif isinstance(arr, NDArray):
                    if arr.engine is not self.engine:
                        raise BindError(
                            "%s holds an array of another engine" % key)
                    handles.append(arr.handle)
                else:
                    raise BindError(
                        "%s only accepts NDArray, got %s" % (key, type(arr)))
            return handles

        handle = self.engine.executor_bind(
            self.handle, context,
            _handles("arg_arrays", arg_arrays),
            _handles("grad_arrays", grad_arrays, allow_none=True),
            [int(r) for r in grad_reqs],
            _handles("aux_arrays", aux_arrays))
        logger.debug("bind %s on %s", self, context)
        return Executor(handle, self, context, self.engine,
                        arg_arrays, grad_arrays, grad_reqs, aux_arrays)


def _attr_str(value):
    if isinstance(value, (tuple, list)):
        return "(" + ", ".join(str(v) for v in value) + ")"
    return str(value)

def _check_arrays(key, arrays):
    for name, arr in arrays.items():
        if not isinstance(arr, NDArray):
            raise TypeError("%s[%s] must be NDArray, got %s" % (
                key, name, type(arr)))


def var(name="", engine=None):
    """ Create a variable symbol. """
    return Symbol.variable(name, engine)

Variable = var

def add(lhs, rhs):
    return lhs + rhs

def subtract(lhs, rhs):
    return lhs - rhs

def multiply(lhs, rhs):
    return lhs * rhs

def divide(lhs, rhs):
    return lhs / rhs

def FullyConnected(data, num_hidden, name="", weight=None, bias=None,
                   no_bias=False, flatten=True):
    keys, values = ["data"], [data]
    if weight is not None:
        keys.append("weight")
        values.append(weight)
    if bias is not None:
        keys.append("bias")
        values.append(bias)
    return Symbol.create_operator(
        "FullyConnected", name, keys, values,
        ["num_hidden", "no_bias", "flatten"],
        [num_hidden, no_bias, flatten])

def Activation(data, act_type, name=""):
    return Symbol.create_operator(
        "Activation", name, ["data"], [data], ["act_type"], [act_type])

def BatchNorm(data, name="", eps=1e-3, momentum=0.9, fix_gamma=True,
              use_global_stats=False):
    return Symbol.create_operator(
        "BatchNorm", name, ["data"], [data],
        ["eps", "momentum", "fix_gamma", "use_global_stats"],
        [eps, momentum, fix_gamma, use_global_stats])

def Flatten(data, name=""):
    return Symbol.create_operator("Flatten", name, ["data"], [data])
