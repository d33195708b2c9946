""" Operator table of the reference engine.

    Each operator is a stateless object registered under its engine
    name with :func:`register_operator`. An operator declares its
    argument and auxiliary-state slots, parses its string attributes,
    and supplies shape transfer, forward and backward functions over
    numpy arrays.

    Shape transfer works in both directions: ``infer_shape`` receives
    the current (possibly ``None``) input, output and auxiliary shapes
    and fills whatever it can deduce in place. The engine repeats the
    passes until nothing changes.
"""

import numpy as np

from ..base import InvalidSymbolError, ShapeInferenceError

REQUIRED = object()


def parse_bool(value):
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("true", "1"):
        return True
    if s in ("false", "0"):
        return False
    raise ValueError("invalid boolean value: %s" % value)


def unify_shape(name, shapes, index, shape):
    """ Set ``shapes[index]``, raising on conflict with a known shape. """
    if shape is None:
        return
    shape = tuple(int(d) for d in shape)
    old = shapes[index]
    if old is None:
        shapes[index] = shape
    elif old != shape:
        raise ShapeInferenceError(
            "Error in operator %s: Shape inconsistent, "
            "Provided=%s, inferred shape=%s" % (name, old, shape))


class Operator(object):
    """ Base operator, never registered itself. """

    op_name = "none"
    params = {}
    """ Parameter name to ``(parser, default)``, default may be REQUIRED. """

    def __init__(self):
        if self.op_name == "none":
            raise RuntimeError("Base operator should not be instantiated")

    @property
    def name_prefix(self):
        return self.op_name.lower()

    def parse_attrs(self, attrs):
        for key in attrs:
            if key not in self.params:
                raise InvalidSymbolError(
                    "operator %s: unknown parameter `%s`" % (
                        self.op_name, key))
        parsed = {}
        for key, (parser, default) in self.params.items():
            if key in attrs:
                try:
                    parsed[key] = parser(attrs[key])
                except (TypeError, ValueError) as err:
                    raise InvalidSymbolError(
                        "operator %s: invalid value `%s` for `%s`: %s" % (
                            self.op_name, attrs[key], key, err)) from err
            elif default is REQUIRED:
                raise InvalidSymbolError(
                    "operator %s: required parameter `%s` is missing" % (
                        self.op_name, key))
            else:
                parsed[key] = default
        return parsed

    def list_arguments(self, params):
        return ["data"]

    def list_auxiliary_states(self, params):
        return []

    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        raise NotImplementedError

    def forward(self, params, inputs, aux, is_train):
        raise NotImplementedError

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        raise NotImplementedError


_OP_TABLE = {}

def register_operator(op_name):
    def wrapper(cls):
        if op_name in _OP_TABLE:
            raise RuntimeError("Duplicated operator: %s" % op_name)
        cls.op_name = op_name
        _OP_TABLE[op_name] = cls()
        return cls
    return wrapper

def get_operator(op_name):
    if op_name not in _OP_TABLE:
        raise InvalidSymbolError("Cannot find operator: %s" % op_name)
    return _OP_TABLE[op_name]

def list_operators():
    return sorted(_OP_TABLE.keys())


class _ElemwiseBinary(Operator):
    def list_arguments(self, params):
        return ["lhs", "rhs"]

    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        known = [s for s in in_shapes + out_shapes if s is not None]
        if not known:
            return
        unify_shape(name, in_shapes, 0, known[0])
        unify_shape(name, in_shapes, 1, known[0])
        unify_shape(name, out_shapes, 0, known[0])

@register_operator("_Plus")
class Plus(_ElemwiseBinary):
    def forward(self, params, inputs, aux, is_train):
        return [inputs[0] + inputs[1]]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        g = out_grads[0]
        return [g, g]

@register_operator("_Minus")
class Minus(_ElemwiseBinary):
    def forward(self, params, inputs, aux, is_train):
        return [inputs[0] - inputs[1]]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        g = out_grads[0]
        return [g, -g]

@register_operator("_Mul")
class Mul(_ElemwiseBinary):
    def forward(self, params, inputs, aux, is_train):
        return [inputs[0] * inputs[1]]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        lhs, rhs = inputs
        g = out_grads[0]
        return [g * rhs, g * lhs]

@register_operator("_Div")
class Div(_ElemwiseBinary):
    def forward(self, params, inputs, aux, is_train):
        return [inputs[0] / inputs[1]]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        lhs, rhs = inputs
        g = out_grads[0]
        return [g / rhs, -g * lhs / (rhs * rhs)]


_ACT_TYPES = ("relu", "sigmoid", "tanh", "softrelu")

def _act_type(value):
    value = str(value)
    if value not in _ACT_TYPES:
        raise ValueError("expected one of %s" % (_ACT_TYPES,))
    return value

@register_operator("Activation")
class Activation(Operator):
    params = {
        "act_type": (_act_type, REQUIRED),
    }

    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        unify_shape(name, out_shapes, 0, in_shapes[0])
        unify_shape(name, in_shapes, 0, out_shapes[0])

    def forward(self, params, inputs, aux, is_train):
        x = inputs[0]
        act = params["act_type"]
        if act == "relu":
            out = np.maximum(x, 0)
        elif act == "sigmoid":
            out = 1.0 / (1.0 + np.exp(-x))
        elif act == "tanh":
            out = np.tanh(x)
        else:
            out = np.log1p(np.exp(x))
        return [out.astype(x.dtype, copy=False)]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        x, y, g = inputs[0], outputs[0], out_grads[0]
        act = params["act_type"]
        if act == "relu":
            return [g * (x > 0)]
        if act == "sigmoid":
            return [g * y * (1 - y)]
        if act == "tanh":
            return [g * (1 - y * y)]
        return [g / (1.0 + np.exp(-x))]


@register_operator("Flatten")
class Flatten(Operator):
    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        data = in_shapes[0]
        if data is not None:
            unify_shape(name, out_shapes, 0,
                        (data[0], int(np.prod(data[1:], dtype=np.int64))))

    def forward(self, params, inputs, aux, is_train):
        x = inputs[0]
        return [x.reshape(x.shape[0], -1)]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        return [out_grads[0].reshape(inputs[0].shape)]


@register_operator("FullyConnected")
class FullyConnected(Operator):
    params = {
        "num_hidden": (int, REQUIRED),
        "no_bias": (parse_bool, False),
        "flatten": (parse_bool, True),
    }

    def list_arguments(self, params):
        if params["no_bias"]:
            return ["data", "weight"]
        return ["data", "weight", "bias"]

    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        num_hidden = params["num_hidden"]
        data = in_shapes[0]
        if data is not None:
            if params["flatten"]:
                num_input = int(np.prod(data[1:], dtype=np.int64))
                out = (data[0], num_hidden)
            else:
                num_input = data[-1]
                out = tuple(data[:-1]) + (num_hidden,)
            unify_shape(name, in_shapes, 1, (num_hidden, num_input))
            unify_shape(name, out_shapes, 0, out)
        if not params["no_bias"]:
            unify_shape(name, in_shapes, 2, (num_hidden,))

    def _data2d(self, params, x):
        if params["flatten"]:
            return x.reshape(x.shape[0], -1)
        return x.reshape(-1, x.shape[-1])

    def forward(self, params, inputs, aux, is_train):
        x, w = inputs[0], inputs[1]
        out = np.dot(self._data2d(params, x), w.T)
        if not params["no_bias"]:
            out = out + inputs[2]
        if not params["flatten"]:
            out = out.reshape(x.shape[:-1] + (w.shape[0],))
        return [out]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        x, w = inputs[0], inputs[1]
        g = out_grads[0].reshape(-1, w.shape[0])
        x2d = self._data2d(params, x)
        grads = [np.dot(g, w).reshape(x.shape), np.dot(g.T, x2d)]
        if not params["no_bias"]:
            grads.append(g.sum(axis=0))
        return grads


@register_operator("BatchNorm")
class BatchNorm(Operator):
    params = {
        "eps": (float, 1e-3),
        "momentum": (float, 0.9),
        "fix_gamma": (parse_bool, True),
        "use_global_stats": (parse_bool, False),
    }

    def list_arguments(self, params):
        return ["data", "gamma", "beta"]

    def list_auxiliary_states(self, params):
        return ["moving_mean", "moving_var"]

    def infer_shape(self, name, params, in_shapes, out_shapes, aux_shapes):
        unify_shape(name, out_shapes, 0, in_shapes[0])
        unify_shape(name, in_shapes, 0, out_shapes[0])
        data = in_shapes[0]
        if data is None:
            return
        if len(data) < 2:
            raise ShapeInferenceError(
                "Error in operator %s: BatchNorm expects data with a "
                "channel axis, got shape %s" % (name, data))
        channel = (data[1],)
        unify_shape(name, in_shapes, 1, channel)
        unify_shape(name, in_shapes, 2, channel)
        unify_shape(name, aux_shapes, 0, channel)
        unify_shape(name, aux_shapes, 1, channel)

    def _bshape(self, x):
        return (1, x.shape[1]) + (1,) * (x.ndim - 2)

    def _axes(self, x):
        return tuple(i for i in range(x.ndim) if i != 1)

    def _use_batch_stats(self, params, is_train):
        return is_train and not params["use_global_stats"]

    def forward(self, params, inputs, aux, is_train):
        x, gamma, beta = inputs
        moving_mean, moving_var = aux
        if params["fix_gamma"]:
            gamma = np.ones_like(gamma)
        if self._use_batch_stats(params, is_train):
            mean = x.mean(axis=self._axes(x))
            var = x.var(axis=self._axes(x))
            momentum = params["momentum"]
            moving_mean[...] = moving_mean * momentum + mean * (1 - momentum)
            moving_var[...] = moving_var * momentum + var * (1 - momentum)
        else:
            mean, var = moving_mean, moving_var
        bshape = self._bshape(x)
        inv_std = 1.0 / np.sqrt(var + params["eps"])
        xhat = (x - mean.reshape(bshape)) * inv_std.reshape(bshape)
        out = xhat * gamma.reshape(bshape) + beta.reshape(bshape)
        return [out.astype(x.dtype, copy=False)]

    def backward(self, params, inputs, aux, outputs, out_grads, is_train):
        x, gamma, _ = inputs
        g = out_grads[0]
        axes, bshape = self._axes(x), self._bshape(x)
        if params["fix_gamma"]:
            gamma = np.ones_like(gamma)
        if self._use_batch_stats(params, is_train):
            mean, var = x.mean(axis=axes), x.var(axis=axes)
        else:
            mean, var = aux
        inv_std = (1.0 / np.sqrt(var + params["eps"])).reshape(bshape)
        xhat = (x - mean.reshape(bshape)) * inv_std
        dbeta = g.sum(axis=axes)
        dgamma = (g * xhat).sum(axis=axes)
        if params["fix_gamma"]:
            dgamma = np.zeros_like(dgamma)
        dxhat = g * gamma.reshape(bshape)
        if self._use_batch_stats(params, is_train):
            m = x.size // x.shape[1]
            dx = inv_std / m * (
                m * dxhat
                - dxhat.sum(axis=axes).reshape(bshape)
                - xhat * (dxhat * xhat).sum(axis=axes).reshape(bshape))
        else:
            dx = dxhat * inv_std
        return [dx, dgamma, dbeta]
