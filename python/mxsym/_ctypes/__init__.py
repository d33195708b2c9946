""" Ctypes binding of the native engine, loaded on first use. """
