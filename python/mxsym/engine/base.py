""" Engine Interface

    The symbol facade never touches graph internals. Every operation is
    forwarded to an engine through opaque handles, and the engine alone
    decides what a handle means. The methods below mirror the C API of
    the wrapped computation-graph library one-to-one, with out-parameters
    turned into return values.

    Handle Contract
    ===============
    Each ``*_create*``/``*_copy``/``executor_bind`` call returns a fresh
    handle that the caller owns and must pass to the matching ``*_free``
    exactly once. Freeing ``None`` is a no-op.

    Errors
    ======
    Implementations raise the errors defined in :mod:`mxsym.base`:
    :class:`InvalidSymbolError` for rejected constructions,
    :class:`ShapeInferenceError` for inconsistent shapes,
    :class:`BindError` for incompatible bind arguments and
    :class:`EngineError` for anything else.
"""


class Engine(object):
    """ Abstract engine, see module documentation. """

    name = "none"

    # symbol handles
    def symbol_free(self, handle):
        raise NotImplementedError

    def symbol_create_variable(self, name):
        raise NotImplementedError

    def symbol_create_operator(self, op_name, name,
                               input_keys, input_handles,
                               config_keys, config_values):
        """ Instantiate ``op_name`` wired to ``input_handles``.

            ``input_keys`` may be empty for positional wiring; config
            keys and values are parallel lists of strings.
        """
        raise NotImplementedError

    def symbol_copy(self, handle):
        raise NotImplementedError

    def symbol_get_name(self, handle):
        raise NotImplementedError

    def symbol_list_arguments(self, handle):
        raise NotImplementedError

    def symbol_list_outputs(self, handle):
        raise NotImplementedError

    def symbol_list_auxiliary_states(self, handle):
        raise NotImplementedError

    def symbol_infer_shape(self, handle, keys, shapes, partial=False):
        """ Propagate known shapes through the graph.

            Returns ``(arg_shapes, out_shapes, aux_shapes, complete)``.
            Unknown entries are empty tuples; ``complete`` is False if
            any shape stays unknown.
        """
        raise NotImplementedError

    # ndarray handles
    def ndarray_create(self, shape, ctx, dtype="float32"):
        raise NotImplementedError

    def ndarray_free(self, handle):
        raise NotImplementedError

    def ndarray_get_shape(self, handle):
        raise NotImplementedError

    def ndarray_get_context(self, handle):
        raise NotImplementedError

    def ndarray_get_dtype(self, handle):
        raise NotImplementedError

    def ndarray_copy_from_numpy(self, handle, np_arr):
        raise NotImplementedError

    def ndarray_to_numpy(self, handle):
        raise NotImplementedError

    # executor handles
    def executor_bind(self, handle, ctx, arg_handles, grad_handles,
                      grad_reqs, aux_handles):
        """ ``grad_handles`` entries may be None where the request
            is ``NULL_OP``. ``grad_reqs`` holds engine integer values.
        """
        raise NotImplementedError

    def executor_forward(self, handle, is_train=False):
        raise NotImplementedError

    def executor_backward(self, handle, head_grad_handles=()):
        raise NotImplementedError

    def executor_outputs(self, handle):
        """ Returns fresh NDArray handles owned by the caller. """
        raise NotImplementedError

    def executor_free(self, handle):
        raise NotImplementedError

    def __repr__(self):
        return "<%s engine>" % self.name
