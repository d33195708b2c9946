import gc
import unittest

import numpy as np

from mxsym import nd, sym
from mxsym.base import BindError, MXSymError, OpReqType
from mxsym.context import cpu, gpu
from mxsym.engine import ReferenceEngine
from mxsym.symbol import Symbol


class ExecutorTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = ReferenceEngine()
        self.ctx = cpu()
        self.a = Symbol.variable("a", engine=self.engine)
        self.b = Symbol.variable("b", engine=self.engine)

    def array(self, value, ctx=None):
        return nd.array(value, ctx or self.ctx, engine=self.engine)


class TestExecutorRun(ExecutorTestCase):
    def test_forward_elementwise(self):
        args = {"a": self.array([1, 2, 3]), "b": self.array([4, 5, 6])}
        expects = [
            (self.a + self.b, [5, 7, 9]),
            (self.a - self.b, [-3, -3, -3]),
            (self.a * self.b, [4, 10, 18]),
            (self.b / self.a, [4, 2.5, 2]),
        ]
        for net, expect in expects:
            with net.simple_bind(self.ctx, args) as exe:
                outputs = exe.forward()
                self.assertEqual(len(outputs), 1)
                np.testing.assert_allclose(outputs[0].asnumpy(), expect)

    def test_forward_kwargs_copy_in(self):
        args = {"a": self.array([1, 2]), "b": self.array([3, 4])}
        with (self.a * self.b).simple_bind(self.ctx, args) as exe:
            out = exe.forward(a=np.array([2, 2], dtype=np.float32))[0]
            np.testing.assert_allclose(out.asnumpy(), [6, 8])
            np.testing.assert_allclose(args["a"].asnumpy(), [2, 2])
            with self.assertRaises(ValueError):
                exe.forward(c=np.zeros(2))

    def test_fully_connected_forward(self):
        data = Symbol.variable("data", engine=self.engine)
        fc = sym.FullyConnected(data, num_hidden=3, name="fc")
        net = sym.Activation(fc, "relu", name="relu")
        args = {"data": self.array(np.ones((2, 5)))}
        with net.simple_bind(self.ctx, args) as exe:
            exe.arg_dict["fc_weight"][:] = np.ones((3, 5), dtype=np.float32)
            exe.arg_dict["fc_bias"][:] = np.array(
                [1, 2, -10], dtype=np.float32)
            out = exe.forward()[0].asnumpy()
            np.testing.assert_allclose(out, [[6, 7, 0], [6, 7, 0]])
            self.assertEqual(list(exe.output_dict), ["relu_output"])

    def test_backward_grad_modes(self):
        args = {"a": self.array([1, 2, 3]), "b": self.array([4, 5, 6])}
        c = Symbol.variable("c", engine=self.engine)
        net = self.a * self.b + c
        args["c"] = self.array([0, 0, 0])
        reqs = {"a": "write", "b": OpReqType.ADD_TO, "c": "null"}
        with net.simple_bind(self.ctx, args, grad_req_type=reqs) as exe:
            exe.forward(is_train=True)
            exe.backward()
            exe.backward()
            grads = exe.grad_dict
            np.testing.assert_allclose(grads["a"].asnumpy(), [4, 5, 6])
            np.testing.assert_allclose(grads["b"].asnumpy(), [2, 4, 6])
            np.testing.assert_allclose(grads["c"].asnumpy(), [0, 0, 0])

    def test_backward_head_gradient(self):
        args = {"a": self.array([1, 2]), "b": self.array([3, 4])}
        with (self.a * self.b).simple_bind(self.ctx, args) as exe:
            exe.forward(is_train=True)
            exe.backward(self.array([10, 100]))
            np.testing.assert_allclose(
                exe.grad_dict["a"].asnumpy(), [30, 400])
            np.testing.assert_allclose(
                exe.grad_dict["b"].asnumpy(), [10, 200])

    def test_backward_rejects_non_array_head_gradient(self):
        args = {"a": self.array([1, 2]), "b": self.array([3, 4])}
        with (self.a * self.b).simple_bind(self.ctx, args) as exe:
            exe.forward(is_train=True)
            with self.assertRaises(TypeError):
                exe.backward([np.ones(2, dtype=np.float32)])

    def test_integer_inputs_keep_float_result(self):
        args = {
            "a": nd.array([2, 4], self.ctx, "int32", engine=self.engine),
            "b": nd.array([3, 3], self.ctx, "int32", engine=self.engine),
        }
        with (self.b / self.a).simple_bind(self.ctx, args) as exe:
            out = exe.forward()[0]
            np.testing.assert_allclose(out.asnumpy(), [1.5, 0.75])
            self.assertEqual(out.dtype, "float64")

    def test_shared_input_accumulates(self):
        args = {"a": self.array([3, 4])}
        with (self.a * self.a).simple_bind(self.ctx, args) as exe:
            exe.forward(is_train=True)
            exe.backward()
            np.testing.assert_allclose(exe.grad_dict["a"].asnumpy(), [6, 8])

    def test_batch_norm_updates_aux_in_training(self):
        data = Symbol.variable("data", engine=self.engine)
        net = sym.BatchNorm(data, name="bn", momentum=0.5)
        value = np.array([[1, 2], [3, 6]], dtype=np.float32)
        with net.simple_bind(self.ctx, {"data": self.array(value)}) as exe:
            exe.aux_dict["bn_moving_var"][:] = np.ones(2, dtype=np.float32)
            exe.forward(is_train=False)
            np.testing.assert_allclose(
                exe.aux_dict["bn_moving_mean"].asnumpy(), [0, 0])

            out = exe.forward(is_train=True)[0].asnumpy()
            np.testing.assert_allclose(
                exe.aux_dict["bn_moving_mean"].asnumpy(), [1, 2])
            np.testing.assert_allclose(
                exe.aux_dict["bn_moving_var"].asnumpy(), [1, 2.5])
            np.testing.assert_allclose(out.mean(axis=0), [0, 0], atol=1e-6)


class TestBind(ExecutorTestCase):
    def setUp(self):
        super(TestBind, self).setUp()
        data = Symbol.variable("data", engine=self.engine)
        fc = sym.FullyConnected(data, num_hidden=4, name="fc")
        self.net = sym.BatchNorm(fc, name="bn")
        self.args = {"data": self.array(np.ones((2, 3)))}

    def test_bind_matches_simple_bind(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        with self.net.bind(self.ctx, *arrays) as exe, \
                self.net.simple_bind(self.ctx, self.args) as simple:
            shapes = [o.shape for o in exe.forward()]
            self.assertEqual(shapes, [o.shape for o in simple.forward()])
            self.assertEqual(shapes, [(2, 4)])
            self.assertEqual(exe.arg_arrays, arrays.arg_arrays)

    def test_bind_null_gradient(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        grads = list(arrays.grad_arrays)
        reqs = list(arrays.grad_reqs)
        grads[0], reqs[0] = None, OpReqType.NULL_OP
        with self.net.bind(self.ctx, arrays.arg_arrays, grads, reqs,
                           arrays.aux_arrays) as exe:
            exe.forward(is_train=True)
            exe.backward()
            self.assertIsNone(exe.grad_dict["data"])

        grads[0], reqs[0] = None, OpReqType.WRITE_TO
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arrays.arg_arrays, grads, reqs,
                          arrays.aux_arrays)

    def test_bind_length_mismatch(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arrays.arg_arrays[:-1], arrays.grad_arrays,
                          arrays.grad_reqs, arrays.aux_arrays)
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arrays.arg_arrays, arrays.grad_arrays,
                          arrays.grad_reqs, [])
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arrays.arg_arrays, arrays.grad_arrays,
                          arrays.grad_reqs[1:], arrays.aux_arrays)
        self.assertEqual(self.engine.live_handles("executor"), 0)

    def test_bind_invalid_arrays(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        arg_arrays = list(arrays.arg_arrays)
        arg_arrays[0] = np.ones((2, 3))
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arg_arrays, arrays.grad_arrays,
                          arrays.grad_reqs, arrays.aux_arrays)

        arg_arrays[0] = nd.array(np.ones((2, 3)), engine=ReferenceEngine())
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arg_arrays, arrays.grad_arrays,
                          arrays.grad_reqs, arrays.aux_arrays)

        arg_arrays[0] = self.array(np.ones((5, 7)))
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arg_arrays, arrays.grad_arrays,
                          arrays.grad_reqs, arrays.aux_arrays)

    def test_bind_invalid_request(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        reqs = list(arrays.grad_reqs)
        reqs[0] = 2
        with self.assertRaises(BindError):
            self.net.bind(self.ctx, arrays.arg_arrays, arrays.grad_arrays,
                          reqs, arrays.aux_arrays)

    def test_bind_context(self):
        arrays = self.net.infer_executor_arrays(self.ctx, self.args)
        with self.assertRaises(TypeError):
            self.net.bind("cpu", *arrays)
        with self.assertRaises(BindError):
            self.net.bind(gpu(0), *arrays)


class TestExecutorLifetime(ExecutorTestCase):
    def bind(self):
        args = {"a": self.array([1, 2]), "b": self.array([3, 4])}
        return (self.a + self.b).simple_bind(self.ctx, args)

    def test_free_once(self):
        exe = self.bind()
        exe.free()
        exe.free()
        self.assertEqual(self.engine.free_calls["executor"], 1)
        self.assertEqual(self.engine.live_handles("executor"), 0)
        with self.assertRaises(MXSymError):
            exe.forward()

    def test_context_manager(self):
        with self.bind() as exe:
            exe.forward()
            self.assertEqual(self.engine.live_handles("executor"), 1)
        self.assertIsNone(exe.handle)
        self.assertEqual(self.engine.free_calls["executor"], 1)

    def test_leaked_executor_is_freed_with_warning(self):
        exe = self.bind()
        with self.assertLogs("mxsym.executor", level="WARNING") as logs:
            del exe
            gc.collect()
        self.assertIn("collected without free()", logs.output[0])
        self.assertEqual(self.engine.live_handles("executor"), 0)

    def test_executor_keeps_symbol_alive(self):
        exe = self.bind()
        handle = exe.symbol.handle
        del self.a, self.b
        gc.collect()
        self.assertEqual(exe.symbol.handle, handle)
        np.testing.assert_allclose(exe.forward()[0].asnumpy(), [4, 6])
        exe.free()


if __name__ == "__main__":
    unittest.main()
