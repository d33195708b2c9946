import ctypes
from enum import IntEnum

mx_uint = ctypes.c_uint

SymbolHandle = ctypes.c_void_p
NDArrayHandle = ctypes.c_void_p
ExecutorHandle = ctypes.c_void_p
AtomicSymbolCreator = ctypes.c_void_p


class MXSymError(Exception):
    """ Base error raised by the symbol wrapper and its engines. """


class EngineError(MXSymError):
    """ Engine call returned a non-zero status. """


class InvalidSymbolError(MXSymError):
    """ Engine rejected a variable or operator construction. """


class ShapeInferenceError(MXSymError):
    """ Shapes are inconsistent or not enough are known. """


class BindError(MXSymError):
    """ Arrays supplied to bind do not match the graph. """


class Status:
    SUCCEED = 0
    ERROR = -1


def check_call(ret, lib=None, error_cls=EngineError):
    """ Raise ``error_cls`` when a C API call returns non-zero.

        The message is fetched through ``MXGetLastError`` when the
        library handle is supplied.
    """
    if ret != Status.SUCCEED:
        msg = "API called with error code: %d" % ret
        if lib is not None:
            msg = py_str(lib.MXGetLastError())
        raise error_cls(msg)


def c_str(string):
    return ctypes.c_char_p(string.encode('utf-8'))


def py_str(x):
    return x.decode('utf-8') if isinstance(x, bytes) else x


def c_array(ctype, values):
    return (ctype * len(values))(*values)


def c_str_array(strings):
    arr = (ctypes.c_char_p * len(strings))()
    arr[:] = [s.encode('utf-8') for s in strings]
    return arr


class OpReqType(IntEnum):
    """ Gradient write mode of one bound argument.

        Values follow the engine's enum, ``kWriteInplace`` (2) is
        engine-internal and not accepted here.
    """
    NULL_OP = 0
    WRITE_TO = 1
    ADD_TO = 3

    @classmethod
    def parse(cls, value):
        """ Accept a member, its integer value or 'null'/'write'/'add'. """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            if value not in _GRAD_REQ_MAP:
                raise ValueError(
                    "grad_req must be in %s, got %s" % (
                        list(_GRAD_REQ_MAP), value))
            return _GRAD_REQ_MAP[value]
        return cls(value)

_GRAD_REQ_MAP = {
    'null': OpReqType.NULL_OP,
    'write': OpReqType.WRITE_TO,
    'add': OpReqType.ADD_TO,
}
