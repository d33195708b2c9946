import os
import ctypes
import threading

from ..libinfo import find_lib_path
from ..common.log import get_logger

logger = get_logger("lib")

_LIB_LOCK = threading.Lock()
_LIBS = {}

def load_lib(lib_path=None):
    """ Load the native library once per resolved path. """
    path = find_lib_path(lib_path)[0]
    with _LIB_LOCK:
        if path not in _LIBS:
            lib = ctypes.CDLL(path, ctypes.RTLD_GLOBAL)
            lib.MXGetLastError.restype = ctypes.c_char_p
            logger.info("load native library %s", os.path.basename(path))
            _LIBS[path] = lib
        return _LIBS[path]
