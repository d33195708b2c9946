""" In-process numpy engine.

    Implements the :class:`~mxsym.engine.base.Engine` handle contract
    without a native library: handles are positive integers indexing
    per-kind tables, and every handle must be freed exactly once.
    Freeing an unknown handle raises, which makes double frees visible.
"""
import collections
import itertools
import re
import threading

import numpy as np

from ..base import BindError, EngineError, InvalidSymbolError
from ..base import OpReqType, ShapeInferenceError
from ..common.log import TRACE, get_logger
from ..context import Context
from .base import Engine
from .operators import get_operator

logger = get_logger("engine.reference")

_INVALID_NAME = re.compile(r"\s")


class _Node(object):
    """ Graph node; ``op`` is None for variables. """
    __slots__ = ["op", "name", "attrs", "params", "inputs"]

    def __init__(self, op, name, attrs=None, params=None, inputs=None):
        self.op = op
        self.name = name
        self.attrs = dict(attrs or {})
        self.params = dict(params or {})
        self.inputs = list(inputs or [])

    def num_args(self):
        return len(self.op.list_arguments(self.params))

    def __repr__(self):
        op_name = "null" if self.op is None else self.op.op_name
        return "<node %s op=%s>" % (self.name, op_name)


class _Array(object):
    __slots__ = ["data", "ctx"]

    def __init__(self, data, ctx):
        self.data = data
        self.ctx = ctx


class _Executor(object):
    def __init__(self, outputs, ctx):
        self.output_nodes = outputs
        self.order = topo_sort(outputs)
        self.arg_nodes, self.aux_nodes = split_variables(self.order)
        self.ctx = ctx
        self.arg_arrays = []
        self.grad_arrays = []
        self.grad_reqs = []
        self.aux_arrays = []
        self.outputs = []
        self.values = None
        self.is_train = False


def topo_sort(outputs):
    """ Post-order DFS, inputs visited in declaration order. """
    order, visited = [], set()
    stack = [(node, False) for node in reversed(outputs)]
    while stack:
        node, expanded = stack.pop()
        if expanded:
            order.append(node)
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))
        stack.append((node, True))
        for inp in reversed(node.inputs):
            if id(inp) not in visited:
                stack.append((inp, False))
    return order

def split_variables(order):
    """ Variables feeding auxiliary slots are auxiliary states. """
    aux_ids = set()
    for node in order:
        if node.op is not None:
            for inp in node.inputs[node.num_args():]:
                aux_ids.add(id(inp))
    args = [n for n in order if n.op is None and id(n) not in aux_ids]
    aux = [n for n in order if n.op is None and id(n) in aux_ids]
    return args, aux

def copy_graph(outputs):
    memo = {}
    for node in topo_sort(outputs):
        memo[id(node)] = _Node(
            node.op, node.name, node.attrs, node.params,
            [memo[id(i)] for i in node.inputs])
    return [memo[id(n)] for n in outputs]

def output_name(node):
    return node.name if node.op is None else node.name + "_output"


class ReferenceEngine(Engine):
    name = "reference"

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._symbols = {}
        self._arrays = {}
        self._executors = {}
        self._name_counter = collections.Counter()
        self.free_calls = collections.Counter()

    # handle tables
    def _new_handle(self, table, obj, kind):
        with self._lock:
            handle = next(self._ids)
            table[handle] = obj
        logger.log(TRACE, "alloc %s handle %d", kind, handle)
        return handle

    def _free_handle(self, table, handle, kind):
        if handle is None:
            return
        with self._lock:
            if handle not in table:
                raise EngineError(
                    "free of unknown %s handle %s" % (kind, handle))
            del table[handle]
            self.free_calls[kind] += 1
        logger.log(TRACE, "free %s handle %d", kind, handle)

    def _get(self, table, handle, kind, error_cls=EngineError):
        with self._lock:
            if handle not in table:
                raise error_cls("invalid %s handle %s" % (kind, handle))
            return table[handle]

    def live_handles(self, kind="symbol"):
        table = {
            "symbol": self._symbols,
            "ndarray": self._arrays,
            "executor": self._executors,
        }[kind]
        with self._lock:
            return len(table)

    def _auto_name(self, prefix):
        with self._lock:
            idx = self._name_counter[prefix]
            self._name_counter[prefix] += 1
        return "%s%d" % (prefix, idx)

    def _check_name(self, name):
        if not isinstance(name, str) or _INVALID_NAME.search(name):
            raise InvalidSymbolError("invalid symbol name: %r" % (name,))

    def _single_output(self, handle):
        outputs = self._get(self._symbols, handle, "symbol",
                            InvalidSymbolError)
        if len(outputs) != 1:
            raise InvalidSymbolError(
                "cannot compose with a symbol of %d outputs" % len(outputs))
        return outputs[0]

    # symbols
    def symbol_free(self, handle):
        self._free_handle(self._symbols, handle, "symbol")

    def symbol_create_variable(self, name):
        self._check_name(name)
        if not name:
            name = self._auto_name("var")
        return self._new_handle(
            self._symbols, [_Node(None, name)], "symbol")

    def symbol_create_operator(self, op_name, name,
                               input_keys, input_handles,
                               config_keys, config_values):
        if len(input_keys) not in (0, len(input_handles)):
            raise InvalidSymbolError(
                "operator %s: %d input keys for %d inputs" % (
                    op_name, len(input_keys), len(input_handles)))
        if len(config_keys) != len(config_values):
            raise InvalidSymbolError(
                "operator %s: %d config keys for %d values" % (
                    op_name, len(config_keys), len(config_values)))
        self._check_name(name)
        op = get_operator(op_name)
        attrs = dict(zip(config_keys, config_values))
        params = op.parse_attrs(attrs)
        if not name:
            name = self._auto_name(op.name_prefix)

        slots = op.list_arguments(params) + op.list_auxiliary_states(params)
        wired = {}
        if input_keys:
            for key, h in zip(input_keys, input_handles):
                if key not in slots:
                    raise InvalidSymbolError(
                        "operator %s: unknown input `%s`, expected %s" % (
                            op_name, key, slots))
                wired[key] = self._single_output(h)
        else:
            if len(input_handles) > len(slots):
                raise InvalidSymbolError(
                    "operator %s: too many inputs, expected at most %d" % (
                        op_name, len(slots)))
            for key, h in zip(slots, input_handles):
                wired[key] = self._single_output(h)

        inputs = []
        for key in slots:
            if key not in wired:
                wired[key] = _Node(None, "%s_%s" % (name, key))
            inputs.append(wired[key])

        node = _Node(op, name, attrs, params, inputs)
        return self._new_handle(self._symbols, [node], "symbol")

    def symbol_copy(self, handle):
        outputs = self._get(self._symbols, handle, "symbol")
        return self._new_handle(
            self._symbols, copy_graph(outputs), "symbol")

    def symbol_get_name(self, handle):
        outputs = self._get(self._symbols, handle, "symbol")
        if len(outputs) != 1:
            return None
        return outputs[0].name

    def symbol_list_arguments(self, handle):
        outputs = self._get(self._symbols, handle, "symbol")
        args, _ = split_variables(topo_sort(outputs))
        return [n.name for n in args]

    def symbol_list_outputs(self, handle):
        outputs = self._get(self._symbols, handle, "symbol")
        return [output_name(n) for n in outputs]

    def symbol_list_auxiliary_states(self, handle):
        outputs = self._get(self._symbols, handle, "symbol")
        _, aux = split_variables(topo_sort(outputs))
        return [n.name for n in aux]

    def symbol_infer_shape(self, handle, keys, shapes, partial=False):
        outputs = self._get(self._symbols, handle, "symbol")
        return self._infer_shape(outputs, dict(zip(keys, shapes)))

    def _infer_shape(self, outputs, known):
        order = topo_sort(outputs)
        args, aux = split_variables(order)
        shapes = {id(n): None for n in order}

        arg_index = {}
        for n in args:
            arg_index.setdefault(n.name, []).append(n)
        for key, shape in known.items():
            if key not in arg_index:
                raise ShapeInferenceError(
                    "cannot find argument `%s`, candidates: %s" % (
                        key, [n.name for n in args]))
            for n in arg_index[key]:
                shapes[id(n)] = tuple(int(d) for d in shape)

        def _num_known():
            return sum(1 for s in shapes.values() if s is not None)

        ops = [n for n in order if n.op is not None]
        for _ in range(len(order) + 1):
            before = _num_known()
            for node in ops + ops[::-1]:
                nargs = node.num_args()
                in_shapes = [shapes[id(i)] for i in node.inputs]
                arg_shapes, aux_shapes = in_shapes[:nargs], in_shapes[nargs:]
                out_shapes = [shapes[id(node)]]
                node.op.infer_shape(
                    node.name, node.params, arg_shapes, out_shapes, aux_shapes)
                for inp, s in zip(node.inputs, arg_shapes + aux_shapes):
                    shapes[id(inp)] = s
                shapes[id(node)] = out_shapes[0]
            if _num_known() == before:
                break

        def _listed(nodes):
            return [shapes[id(n)] if shapes[id(n)] is not None else ()
                    for n in nodes]

        complete = all(shapes[id(n)] is not None
                       for n in args + aux + list(outputs))
        return _listed(args), _listed(outputs), _listed(aux), complete

    # ndarrays
    def ndarray_create(self, shape, ctx, dtype="float32"):
        data = np.zeros(tuple(int(d) for d in shape), dtype=np.dtype(dtype))
        return self._new_handle(
            self._arrays, _Array(data, Context(ctx)), "ndarray")

    def _wrap_array(self, array):
        return self._new_handle(self._arrays, array, "ndarray")

    def ndarray_free(self, handle):
        self._free_handle(self._arrays, handle, "ndarray")

    def ndarray_get_shape(self, handle):
        return tuple(self._get(self._arrays, handle, "ndarray").data.shape)

    def ndarray_get_context(self, handle):
        return Context(self._get(self._arrays, handle, "ndarray").ctx)

    def ndarray_get_dtype(self, handle):
        return self._get(self._arrays, handle, "ndarray").data.dtype.name

    def ndarray_copy_from_numpy(self, handle, np_arr):
        arr = self._get(self._arrays, handle, "ndarray")
        if tuple(np_arr.shape) != arr.data.shape:
            raise EngineError(
                "array shape do not match the shape of NDArray %s vs %s" % (
                    tuple(np_arr.shape), arr.data.shape))
        arr.data[...] = np_arr

    def ndarray_to_numpy(self, handle):
        return self._get(self._arrays, handle, "ndarray").data.copy()

    # executors
    def executor_bind(self, handle, ctx, arg_handles, grad_handles,
                      grad_reqs, aux_handles):
        outputs = self._get(self._symbols, handle, "symbol", BindError)
        exe = _Executor(outputs, Context(ctx))
        num_args, num_aux = len(exe.arg_nodes), len(exe.aux_nodes)
        if len(arg_handles) != num_args:
            raise BindError("expect %d argument arrays, got %d" % (
                num_args, len(arg_handles)))
        if len(grad_handles) != num_args or len(grad_reqs) != num_args:
            raise BindError(
                "expect %d gradient arrays and requests, got %d and %d" % (
                    num_args, len(grad_handles), len(grad_reqs)))
        if len(aux_handles) != num_aux:
            raise BindError("expect %d auxiliary arrays, got %d" % (
                num_aux, len(aux_handles)))

        def _array(h, kind):
            arr = self._get(self._arrays, h, "ndarray", BindError)
            if arr.ctx != exe.ctx:
                raise BindError("%s array on %s, executor bound on %s" % (
                    kind, arr.ctx, exe.ctx))
            return arr

        exe.arg_arrays = [_array(h, "argument") for h in arg_handles]
        exe.aux_arrays = [_array(h, "auxiliary") for h in aux_handles]
        for node, h, req in zip(exe.arg_nodes, grad_handles, grad_reqs):
            try:
                req = OpReqType(req)
            except ValueError as err:
                raise BindError(str(err)) from err
            exe.grad_reqs.append(req)
            if h is None:
                if req != OpReqType.NULL_OP:
                    raise BindError(
                        "argument `%s` requests gradient %s "
                        "without a gradient array" % (node.name, req.name))
                exe.grad_arrays.append(None)
            else:
                exe.grad_arrays.append(_array(h, "gradient"))

        known = {}
        for node, arr in zip(exe.arg_nodes, exe.arg_arrays):
            known[node.name] = arr.data.shape
        try:
            arg_shapes, out_shapes, aux_shapes, complete = \
                self._infer_shape(outputs, known)
        except ShapeInferenceError as err:
            raise BindError(str(err)) from err
        if not complete:
            raise BindError("cannot infer shapes from the bound arguments")
        for node, arr, shape in zip(exe.arg_nodes, exe.arg_arrays, arg_shapes):
            if arr.data.shape != shape:
                raise BindError(
                    "argument `%s` shape %s, inferred %s" % (
                        node.name, arr.data.shape, shape))
        for node, arr, shape in zip(exe.arg_nodes, exe.grad_arrays, arg_shapes):
            if arr is not None and arr.data.shape != shape:
                raise BindError(
                    "gradient of `%s` shape %s, inferred %s" % (
                        node.name, arr.data.shape, shape))
        for node, arr, shape in zip(exe.aux_nodes, exe.aux_arrays, aux_shapes):
            if arr.data.shape != shape:
                raise BindError(
                    "auxiliary state `%s` shape %s, inferred %s" % (
                        node.name, arr.data.shape, shape))

        # refined by forward to the dtype numpy actually produces
        dtype = np.result_type(
            *[arr.data.dtype for arr in exe.arg_arrays + exe.aux_arrays]) \
            if exe.arg_arrays else np.float32
        exe.outputs = [_Array(np.zeros(s, dtype=dtype), exe.ctx)
                       for s in out_shapes]
        return self._new_handle(self._executors, exe, "executor")

    def executor_forward(self, handle, is_train=False):
        exe = self._get(self._executors, handle, "executor")
        var_values = {}
        for node, arr in zip(exe.arg_nodes, exe.arg_arrays):
            var_values[id(node)] = arr.data
        for node, arr in zip(exe.aux_nodes, exe.aux_arrays):
            var_values[id(node)] = arr.data

        values = {}
        for node in exe.order:
            if node.op is None:
                values[id(node)] = var_values[id(node)]
                continue
            nargs = node.num_args()
            ins = [values[id(i)] for i in node.inputs]
            out = node.op.forward(
                node.params, ins[:nargs], ins[nargs:], is_train)
            values[id(node)] = out[0]
        for arr, node in zip(exe.outputs, exe.output_nodes):
            value = np.asarray(values[id(node)])
            if value.dtype != arr.data.dtype:
                arr.data = value.copy()
            else:
                arr.data[...] = value
        exe.values = values
        exe.is_train = is_train

    def executor_backward(self, handle, head_grad_handles=()):
        exe = self._get(self._executors, handle, "executor")
        if exe.values is None:
            raise EngineError("forward must run before backward")
        values = exe.values
        if head_grad_handles:
            if len(head_grad_handles) != len(exe.output_nodes):
                raise EngineError("expect %d head gradients, got %d" % (
                    len(exe.output_nodes), len(head_grad_handles)))
            heads = [self._get(self._arrays, h, "ndarray").data
                     for h in head_grad_handles]
        else:
            heads = [np.ones_like(arr.data) for arr in exe.outputs]

        grads = {}
        def _accumulate(node, g):
            if id(node) in grads:
                grads[id(node)] = grads[id(node)] + g
            else:
                grads[id(node)] = g

        for node, g in zip(exe.output_nodes, heads):
            _accumulate(node, g)
        for node in reversed(exe.order):
            g = grads.get(id(node))
            if g is None or node.op is None:
                continue
            nargs = node.num_args()
            ins = [values[id(i)] for i in node.inputs]
            in_grads = node.op.backward(
                node.params, ins[:nargs], ins[nargs:],
                [values[id(node)]], [g], exe.is_train)
            for inp, ig in zip(node.inputs[:nargs], in_grads):
                _accumulate(inp, ig)

        for node, arr, req in zip(exe.arg_nodes, exe.grad_arrays, exe.grad_reqs):
            if req == OpReqType.NULL_OP or arr is None:
                continue
            g = grads.get(id(node))
            if g is None:
                g = np.zeros_like(arr.data)
            if req == OpReqType.ADD_TO:
                arr.data += g
            else:
                arr.data[...] = g

    def executor_outputs(self, handle):
        exe = self._get(self._executors, handle, "executor")
        return [self._wrap_array(arr) for arr in exe.outputs]

    def executor_free(self, handle):
        self._free_handle(self._executors, handle, "executor")
