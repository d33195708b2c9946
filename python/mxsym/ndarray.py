import numpy as np

from . import config, session
from .common.log import get_logger
from .context import Context

logger = get_logger("ndarray")


class NDArrayBase(object):
    """ Owner of one engine tensor handle, freed when collected. """
    __slots__ = ["handle", "engine", "__weakref__"]

    def __init__(self, handle, engine):
        self.handle = handle
        self.engine = engine

    def __del__(self):
        handle, self.handle = self.handle, None
        if handle is None:
            return
        try:
            self.engine.ndarray_free(handle)
        except Exception: # pylint: disable=broad-except
            logger.exception("failed to free ndarray handle %s", handle)


class NDArray(NDArrayBase):
    __slots__ = []

    @property
    def shape(self):
        """Shape of this array"""
        return tuple(self.engine.ndarray_get_shape(self.handle))

    @property
    def dtype(self):
        """Type of this array"""
        return self.engine.ndarray_get_dtype(self.handle)

    @property
    def context(self):
        """context of this array"""
        return self.engine.ndarray_get_context(self.handle)

    @property
    def ctx(self):
        return self.context

    def __setitem__(self, in_slice, value):
        """Set ndarray value"""
        if (not isinstance(in_slice, slice) or
                in_slice.start is not None
                or in_slice.stop is not None):
            raise ValueError('Array only support set from numpy array')
        if isinstance(value, NDArrayBase):
            if value.handle is not self.handle:
                value.copyto(self)
        elif isinstance(value, (np.ndarray, np.generic)):
            self.copyfrom(value)
        else:
            raise TypeError('type %s not supported' % str(type(value)))

    def copyfrom(self, source_array):
        """Perform a synchronized copy from the array.

        Parameters
        ----------
        source_array : array_like
            The data source we should like to copy from.

        Returns
        -------
        arr : NDArray
            Reference to self.
        """
        if isinstance(source_array, NDArrayBase):
            source_array = source_array.asnumpy()
        if not isinstance(source_array, np.ndarray):
            try:
                source_array = np.array(source_array, dtype=self.dtype)
            except (TypeError, ValueError) as err:
                raise TypeError('array must be an array_like data,' +
                                'type %s is not supported' % str(
                                    type(source_array))) from err
        if source_array.shape != self.shape:
            raise ValueError(
                "array shape do not match the shape of NDArray "
                "{0} vs {1}".format(source_array.shape, self.shape))
        source_array = np.ascontiguousarray(source_array, dtype=self.dtype)
        self.engine.ndarray_copy_from_numpy(self.handle, source_array)
        return self

    def copyto(self, target):
        if isinstance(target, Context):
            target = empty(self.shape, target, self.dtype, self.engine)
        if not isinstance(target, NDArrayBase):
            raise ValueError("Unsupported target type %s" % str(type(target)))
        target.copyfrom(self.asnumpy())
        return target

    def asnumpy(self):
        """Convert this array to numpy array

        Returns
        -------
        np_arr : numpy.ndarray
            The corresponding numpy array.
        """
        return self.engine.ndarray_to_numpy(self.handle)

    def __repr__(self):
        shape_info = 'x'.join(['%d' % x for x in self.shape])
        return '<NDArray %s @%s>' % (shape_info, self.context)


def empty(shape, ctx=None, dtype=None, engine=None):
    """ Allocate an array, zero-filled by the engine contract.

        ``ctx`` and ``dtype`` default to the session configuration
        (``CONTEXT.*`` and ``BIND.DTYPE``).
    """
    engine = session.resolve(engine)
    if ctx is None or dtype is None:
        cfg = session.current_cfg()
        if ctx is None:
            ctx = config.default_context(cfg)
        if dtype is None:
            dtype = cfg.BIND.DTYPE
    if isinstance(shape, int):
        shape = (shape,)
    handle = engine.ndarray_create(tuple(shape), ctx, dtype)
    return NDArray(handle, engine)

def zeros(shape, ctx=None, dtype=None, engine=None):
    arr = empty(shape, ctx, dtype, engine)
    return arr.copyfrom(np.zeros(arr.shape, dtype=arr.dtype))

def ones(shape, ctx=None, dtype=None, engine=None):
    arr = empty(shape, ctx, dtype, engine)
    return arr.copyfrom(np.ones(arr.shape, dtype=arr.dtype))

def array(arr, ctx=None, dtype=None, engine=None):
    """Create an array from source arr.

    Parameters
    ----------
    arr : numpy.ndarray
        The array to be copied from

    ctx : Context, optional
        The device context to create the array

    Returns
    -------
    ret : NDArray
        The created array
    """
    if isinstance(arr, NDArray):
        arr = arr.asnumpy()
    if dtype is None:
        dtype = session.current_cfg().BIND.DTYPE
    arr = np.asarray(arr, dtype=dtype)
    return empty(arr.shape, ctx, arr.dtype.name, engine).copyfrom(arr)
