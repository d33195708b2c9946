import logging
import os
import tempfile
import unittest
from unittest import mock

import numpy as np

from mxsym import config, nd, session
from mxsym.base import OpReqType
from mxsym.common import log
from mxsym.context import cpu, gpu
from mxsym.engine import ReferenceEngine
from mxsym.symbol import Symbol


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = config.get_cfg_defaults()
        self.assertEqual(cfg.ENGINE.BACKEND, "reference")
        self.assertEqual(cfg.LOG.LEVEL, "INFO")
        self.assertEqual(OpReqType.parse(cfg.BIND.DEFAULT_GRAD_REQ),
                         OpReqType.WRITE_TO)
        self.assertEqual(config.default_context(cfg), cpu(0))

        cfg.ENGINE.BACKEND = "native"
        self.assertEqual(config.get_cfg_defaults().ENGINE.BACKEND,
                         "reference")

    def test_load_from_yaml_and_opts(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "mxsym.yaml")
            with open(path, "w") as f:
                f.write("LOG:\n  LEVEL: DEBUG\n"
                        "CONTEXT:\n  DEVICE_TYPE: gpu\n  DEVICE_ID: 1\n")
            cfg = config.load_cfg(path, ["BIND.DEFAULT_GRAD_REQ", "add"])
        self.assertEqual(cfg.LOG.LEVEL, "DEBUG")
        self.assertEqual(config.default_context(cfg), gpu(1))
        self.assertEqual(cfg.BIND.DEFAULT_GRAD_REQ, "add")
        self.assertTrue(cfg.is_frozen())

    def test_invalid_values(self):
        for opts in [["ENGINE.BACKEND", "tvm"],
                     ["LOG.LEVEL", "LOUD"],
                     ["CONTEXT.DEVICE_TYPE", "tpu"],
                     ["BIND.DEFAULT_GRAD_REQ", "inplace"]]:
            with self.assertRaises(ValueError):
                config.load_cfg(opts=opts)

    def test_unknown_key(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "mxsym.yaml")
            with open(path, "w") as f:
                f.write("ENGINE:\n  THREADS: 4\n")
            with self.assertRaises(KeyError):
                config.load_cfg(path)

    def test_create_engine(self):
        engine = config.create_engine(config.load_cfg())
        self.assertIsInstance(engine, ReferenceEngine)


class TestSession(unittest.TestCase):
    def setUp(self):
        session.shutdown()

    def tearDown(self):
        session.shutdown()

    def test_requires_engine(self):
        with self.assertRaises(RuntimeError):
            session.current()
        with self.assertRaises(RuntimeError):
            Symbol.variable("x")
        with self.assertRaises(RuntimeError):
            session.restore()

    def test_init_from_config(self):
        engine = session.init()
        self.assertIsInstance(engine, ReferenceEngine)
        self.assertIs(session.current(), engine)
        x = Symbol.variable("x")
        self.assertIs(x.engine, engine)

    def test_use_stacks_engines(self):
        outer, inner = ReferenceEngine(), ReferenceEngine()
        session.init(outer)
        with session.use(inner) as engine:
            self.assertIs(engine, inner)
            self.assertIs(Symbol.variable("x").engine, inner)
            with session.use(inner):
                self.assertIs(session.current(), inner)
            self.assertIs(session.current(), inner)
        self.assertIs(session.current(), outer)

    def test_init_same_engine_reuses(self):
        engine = ReferenceEngine()
        session.init(engine)
        session.init(engine)
        session.restore()
        with self.assertRaises(RuntimeError):
            session.current()

    def test_session_config_drives_bind_defaults(self):
        cfg = config.load_cfg(opts=[
            "BIND.DEFAULT_GRAD_REQ", "null", "BIND.DTYPE", "float64",
            "CONTEXT.DEVICE_ID", 2])
        with mock.patch.object(config, "init_logging"):
            engine = session.init(cfg=cfg)
        self.assertIs(session.current_cfg(), cfg)
        a = Symbol.variable("a")
        b = Symbol.variable("b")
        args = {"a": nd.array(np.ones(3), cpu(2))}
        self.assertEqual(args["a"].dtype, "float64")

        arrays = (a + b).infer_executor_arrays(cpu(2), args)
        self.assertEqual(set(arrays.grad_reqs), {OpReqType.NULL_OP})
        self.assertEqual([arr.dtype for arr in arrays.arg_arrays],
                         ["float64", "float64"])
        self.assertEqual(
            set(arr.dtype for arr in arrays.grad_arrays), {"float64"})

        arrays = (a + b).infer_executor_arrays(
            cpu(2), args, default_grad_req="add")
        self.assertEqual(set(arrays.grad_reqs), {OpReqType.ADD_TO})

        arr = nd.zeros((2,), engine=engine)
        self.assertEqual(arr.context, cpu(2))
        self.assertEqual(arr.dtype, "float64")

        with session.use(ReferenceEngine()):
            self.assertIs(session.current_cfg(), cfg)

    def test_default_config_without_session(self):
        self.assertEqual(session.current_cfg().BIND.DTYPE, "float32")
        engine = ReferenceEngine()
        a = Symbol.variable("a", engine=engine)
        args = {"a": nd.array(np.ones(3), engine=engine)}
        arrays = a.infer_executor_arrays(cpu(), args)
        self.assertEqual(arrays.grad_reqs, [OpReqType.WRITE_TO])

    def test_init_applies_logging_config(self):
        cfg = config.load_cfg(opts=["LOG.LEVEL", "DEBUG"])
        with mock.patch.object(config, "init_logging") as init_logging:
            session.init(cfg=cfg)
        init_logging.assert_called_once_with(cfg)

    def test_explicit_engine_wins(self):
        session.init(ReferenceEngine())
        engine = ReferenceEngine()
        self.assertIs(Symbol.variable("x", engine=engine).engine, engine)


class TestLog(unittest.TestCase):
    def test_level_names(self):
        self.assertEqual(log.name2level("info"), log.INFO)
        self.assertEqual(log.name2level("WARNING"), log.WARN)
        self.assertEqual(log.level2name(log.TRACE), "TRACE")
        with self.assertRaises(ValueError):
            log.name2level("LOUD")

    def test_filter_list(self):
        flt = log.FilterList(
            allows=["mxsym"], disables=["mxsym.engine"], log_level=log.WARN)

        def record(name, level=log.INFO):
            return logging.LogRecord(
                name, level, __file__, 0, "msg", None, None)

        self.assertTrue(flt.filter(record("mxsym.symbol")))
        self.assertFalse(flt.filter(record("mxsym.engine.reference")))
        self.assertFalse(flt.filter(record("other")))
        self.assertTrue(flt.filter(record("other", log.ERROR)))

    def test_component_logger_name(self):
        self.assertEqual(log.get_logger("symbol").name, "mxsym.symbol")


if __name__ == "__main__":
    unittest.main()
