""" Ctypes binding of the native engine C API.

    Each method is a thin marshalling layer over one or two C calls;
    out-parameters are returned as Python values, and non-zero status
    codes are raised with the library's last error message.
"""
import ctypes

import numpy as np

from ..base import AtomicSymbolCreator, ExecutorHandle
from ..base import NDArrayHandle, SymbolHandle, mx_uint
from ..base import BindError, InvalidSymbolError, ShapeInferenceError
from ..base import c_array, c_str, c_str_array, check_call, py_str
from ..common.log import TRACE, get_logger
from ..context import Context
from ..engine.base import Engine
from .lib import load_lib

logger = get_logger("engine.native")

_DTYPE_NP_TO_MX = {
    np.float32: 0,
    np.float64: 1,
    np.float16: 2,
    np.uint8: 3,
    np.int32: 4,
    np.int8: 5,
    np.int64: 6,
}
_DTYPE_MX_TO_NP = {v: k for k, v in _DTYPE_NP_TO_MX.items()}


class NativeEngine(Engine):
    name = "native"

    def __init__(self, lib_path=None):
        self._lib = load_lib(lib_path)
        self._creators = None

    def _call(self, ret, error_cls=None):
        if error_cls is None:
            check_call(ret, self._lib)
        else:
            check_call(ret, self._lib, error_cls)

    def _creator(self, op_name):
        if self._creators is None:
            size = mx_uint()
            plist = ctypes.POINTER(AtomicSymbolCreator)()
            self._call(self._lib.MXSymbolListAtomicSymbolCreators(
                ctypes.byref(size), ctypes.byref(plist)))
            creators = {}
            for i in range(size.value):
                name = ctypes.c_char_p()
                hdl = AtomicSymbolCreator(plist[i])
                self._call(self._lib.MXSymbolGetAtomicSymbolName(
                    hdl, ctypes.byref(name)))
                creators[py_str(name.value)] = hdl
            self._creators = creators
        if op_name not in self._creators:
            raise InvalidSymbolError("Cannot find operator: %s" % op_name)
        return self._creators[op_name]

    def _list_names(self, func, handle):
        size = mx_uint()
        sarr = ctypes.POINTER(ctypes.c_char_p)()
        self._call(func(handle, ctypes.byref(size), ctypes.byref(sarr)))
        return [py_str(sarr[i]) for i in range(size.value)]

    # symbols
    def symbol_free(self, handle):
        if handle is None:
            return
        logger.log(TRACE, "free symbol handle %s", handle.value)
        self._call(self._lib.MXSymbolFree(handle))

    def symbol_create_variable(self, name):
        handle = SymbolHandle()
        self._call(self._lib.MXSymbolCreateVariable(
            c_str(name), ctypes.byref(handle)), InvalidSymbolError)
        return handle

    def symbol_create_operator(self, op_name, name,
                               input_keys, input_handles,
                               config_keys, config_values):
        creator = self._creator(op_name)
        handle = SymbolHandle()
        self._call(self._lib.MXSymbolCreateAtomicSymbol(
            creator, mx_uint(len(config_keys)),
            c_str_array(config_keys), c_str_array(config_values),
            ctypes.byref(handle)), InvalidSymbolError)
        keys = c_str_array(input_keys) if input_keys else None
        ret = self._lib.MXSymbolCompose(
            handle, c_str(name), mx_uint(len(input_handles)), keys,
            c_array(SymbolHandle, input_handles))
        if ret != 0:
            self._lib.MXSymbolFree(handle)
            self._call(ret, InvalidSymbolError)
        return handle

    def symbol_copy(self, handle):
        out = SymbolHandle()
        self._call(self._lib.MXSymbolCopy(handle, ctypes.byref(out)))
        return out

    def symbol_get_name(self, handle):
        name = ctypes.c_char_p()
        success = ctypes.c_int()
        self._call(self._lib.MXSymbolGetName(
            handle, ctypes.byref(name), ctypes.byref(success)))
        return py_str(name.value) if success.value != 0 else None

    def symbol_list_arguments(self, handle):
        return self._list_names(self._lib.MXSymbolListArguments, handle)

    def symbol_list_outputs(self, handle):
        return self._list_names(self._lib.MXSymbolListOutputs, handle)

    def symbol_list_auxiliary_states(self, handle):
        return self._list_names(
            self._lib.MXSymbolListAuxiliaryStates, handle)

    def symbol_infer_shape(self, handle, keys, shapes, partial=False):
        sdata, indptr = [], [0]
        for shape in shapes:
            sdata.extend(shape)
            indptr.append(len(sdata))
        sizes = [mx_uint() for _ in range(3)]
        ndims = [ctypes.POINTER(mx_uint)() for _ in range(3)]
        datas = [ctypes.POINTER(ctypes.POINTER(mx_uint))() for _ in range(3)]
        complete = ctypes.c_int()
        infer_func = self._lib.MXSymbolInferShapePartial if partial \
            else self._lib.MXSymbolInferShape
        out_args = []
        for size, ndim, data in zip(sizes, ndims, datas):
            out_args.extend([ctypes.byref(size), ctypes.byref(ndim),
                             ctypes.byref(data)])
        self._call(infer_func(
            handle, mx_uint(len(keys)), c_str_array(list(keys)),
            c_array(mx_uint, indptr), c_array(mx_uint, sdata),
            *out_args, ctypes.byref(complete)), ShapeInferenceError)
        arg_shapes, out_shapes, aux_shapes = [
            [tuple(data[i][:ndim[i]]) for i in range(size.value)]
            for size, ndim, data in zip(sizes, ndims, datas)]
        return arg_shapes, out_shapes, aux_shapes, complete.value != 0

    # ndarrays
    def ndarray_create(self, shape, ctx, dtype="float32"):
        handle = NDArrayHandle()
        ctx = Context(ctx)
        self._call(self._lib.MXNDArrayCreateEx(
            c_array(mx_uint, shape), mx_uint(len(shape)),
            ctypes.c_int(ctx.device_type), ctypes.c_int(ctx.device_id),
            ctypes.c_int(0),
            ctypes.c_int(_DTYPE_NP_TO_MX[np.dtype(dtype).type]),
            ctypes.byref(handle)))
        return handle

    def ndarray_free(self, handle):
        if handle is None:
            return
        self._call(self._lib.MXNDArrayFree(handle))

    def ndarray_get_shape(self, handle):
        ndim = mx_uint()
        pdata = ctypes.POINTER(mx_uint)()
        self._call(self._lib.MXNDArrayGetShape(
            handle, ctypes.byref(ndim), ctypes.byref(pdata)))
        return tuple(pdata[:ndim.value])

    def ndarray_get_context(self, handle):
        dev_type = ctypes.c_int()
        dev_id = ctypes.c_int()
        self._call(self._lib.MXNDArrayGetContext(
            handle, ctypes.byref(dev_type), ctypes.byref(dev_id)))
        return Context(dev_type.value, dev_id.value)

    def ndarray_get_dtype(self, handle):
        mx_dtype = ctypes.c_int()
        self._call(self._lib.MXNDArrayGetDType(
            handle, ctypes.byref(mx_dtype)))
        return np.dtype(_DTYPE_MX_TO_NP[mx_dtype.value]).name

    def ndarray_copy_from_numpy(self, handle, np_arr):
        np_arr = np.ascontiguousarray(
            np_arr, dtype=self.ndarray_get_dtype(handle))
        self._call(self._lib.MXNDArraySyncCopyFromCPU(
            handle, np_arr.ctypes.data_as(ctypes.c_void_p),
            ctypes.c_size_t(np_arr.size)))

    def ndarray_to_numpy(self, handle):
        data = np.empty(self.ndarray_get_shape(handle),
                        dtype=self.ndarray_get_dtype(handle))
        self._call(self._lib.MXNDArraySyncCopyToCPU(
            handle, data.ctypes.data_as(ctypes.c_void_p),
            ctypes.c_size_t(data.size)))
        return data

    # executors
    def executor_bind(self, handle, ctx, arg_handles, grad_handles,
                      grad_reqs, aux_handles):
        if len(grad_handles) != len(arg_handles) or \
                len(grad_reqs) != len(arg_handles):
            raise BindError(
                "expect %d gradient arrays and requests, got %d and %d" % (
                    len(arg_handles), len(grad_handles), len(grad_reqs)))
        ctx = Context(ctx)
        out = ExecutorHandle()
        self._call(self._lib.MXExecutorBind(
            handle,
            ctypes.c_int(ctx.device_type), ctypes.c_int(ctx.device_id),
            mx_uint(len(arg_handles)),
            c_array(NDArrayHandle, arg_handles),
            c_array(NDArrayHandle, grad_handles),
            c_array(mx_uint, [int(r) for r in grad_reqs]),
            mx_uint(len(aux_handles)),
            c_array(NDArrayHandle, aux_handles),
            ctypes.byref(out)), BindError)
        return out

    def executor_forward(self, handle, is_train=False):
        self._call(self._lib.MXExecutorForward(
            handle, ctypes.c_int(int(is_train))))

    def executor_backward(self, handle, head_grad_handles=()):
        self._call(self._lib.MXExecutorBackward(
            handle, mx_uint(len(head_grad_handles)),
            c_array(NDArrayHandle, list(head_grad_handles))))

    def executor_outputs(self, handle):
        size = mx_uint()
        handles = ctypes.POINTER(NDArrayHandle)()
        self._call(self._lib.MXExecutorOutputs(
            handle, ctypes.byref(size), ctypes.byref(handles)))
        return [NDArrayHandle(handles[i]) for i in range(size.value)]

    def executor_free(self, handle):
        if handle is None:
            return
        self._call(self._lib.MXExecutorFree(handle))
