import os


def find_lib_path(lib_path=None):
    """ Locate the native engine library.

        Lookup order: the explicit ``lib_path``, the
        ``MXSYM_LIBRARY_PATH`` environment variable, then the package
        directory, the source tree and its ``build`` directory.
    """
    if lib_path is None:
        lib_path = os.environ.get("MXSYM_LIBRARY_PATH", None)
    if lib_path:
        if os.path.isfile(lib_path):
            return [os.path.realpath(lib_path)]
        raise RuntimeError("Cannot find the library file: %s" % lib_path)

    pkg_dir = os.path.dirname(os.path.realpath(os.path.expanduser(__file__)))
    source_dir = os.path.join(pkg_dir, "..", "..")

    dll_path = [pkg_dir, source_dir]
    dll_path.append(os.path.join(source_dir, "build"))
    dll_path.append(os.path.join(source_dir, "lib"))

    dll_path = [os.path.realpath(x) for x in dll_path]

    lib_names = ["libmxnet.so", "libmxnet.dylib"]
    lib_dll_path = [os.path.join(p, ln) for ln in lib_names for p in dll_path]

    lib_found = [p for p in lib_dll_path if os.path.exists(p) and os.path.isfile(p)]

    if not lib_found:
        message = ('Cannot find the files.\n' +
                   'List of candidates:\n' +
                   str('\n'.join(lib_dll_path)))
        raise RuntimeError(message)
    return lib_found

__VERSION__ = "0.1.0"
