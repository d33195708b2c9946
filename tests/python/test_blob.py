import copy
import gc
import threading
import unittest
from unittest import mock

from mxsym.engine import ReferenceEngine
from mxsym.symbol import Symbol, SymBlob


class TestSymBlob(unittest.TestCase):
    def setUp(self):
        self.engine = mock.Mock(wraps=ReferenceEngine())

    def test_release_once(self):
        handle = self.engine.symbol_create_variable("x")
        blob = SymBlob(handle, self.engine)
        blob.release()
        blob.release()
        self.assertTrue(blob.released)
        self.assertIsNone(blob.handle)
        self.engine.symbol_free.assert_called_once_with(handle)

    def test_release_on_collect(self):
        handle = self.engine.symbol_create_variable("x")
        blob = SymBlob(handle, self.engine)
        del blob
        gc.collect()
        self.engine.symbol_free.assert_called_once_with(handle)

    def test_null_handle_release_is_delegated(self):
        blob = SymBlob(engine=self.engine)
        self.assertIsNone(blob.handle)
        blob.release()
        self.engine.symbol_free.assert_called_once_with(None)

    def test_not_copyable(self):
        blob = SymBlob(self.engine.symbol_create_variable("x"), self.engine)
        with self.assertRaises(TypeError):
            copy.copy(blob)
        with self.assertRaises(TypeError):
            copy.deepcopy(blob)

    def test_concurrent_release(self):
        handle = self.engine.symbol_create_variable("x")
        blob = SymBlob(handle, self.engine)
        barrier = threading.Barrier(8)

        def _release():
            barrier.wait()
            blob.release()

        threads = [threading.Thread(target=_release) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.engine.symbol_free.assert_called_once_with(handle)


class TestSymbolSharing(unittest.TestCase):
    def setUp(self):
        self.engine = mock.Mock(wraps=ReferenceEngine())

    def test_last_reference_releases(self):
        origin = Symbol.variable("x", engine=self.engine)
        handle = origin.handle
        refs = [copy.copy(origin) for _ in range(5)]
        del origin
        del refs[:-1]
        gc.collect()
        self.engine.symbol_free.assert_not_called()
        self.assertEqual(refs[0].list_arguments(), ["x"])
        self.assertEqual(refs[0].handle, handle)

        del refs
        gc.collect()
        self.engine.symbol_free.assert_called_once_with(handle)

    def test_shared_across_threads(self):
        origin = Symbol.variable("x", engine=self.engine)
        handle = origin.handle
        names = []

        def _worker(ref):
            names.append(ref.list_arguments())

        threads = [threading.Thread(target=_worker, args=(copy.copy(origin),))
                   for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        del threads
        self.assertEqual(names, [["x"]] * 4)
        self.engine.symbol_free.assert_not_called()

        del origin
        gc.collect()
        self.engine.symbol_free.assert_called_once_with(handle)

    def test_composition_keeps_inputs_valid(self):
        a = Symbol.variable("a", engine=self.engine)
        b = Symbol.variable("b", engine=self.engine)
        c = a + b
        del a, b
        gc.collect()
        self.assertEqual(c.list_arguments(), ["a", "b"])
        self.assertEqual(self.engine.symbol_free.call_count, 2)

    def test_every_handle_freed_once(self):
        engine = ReferenceEngine()
        data = Symbol.variable("data", engine=engine)
        net = (data * data + data).copy()
        del data, net
        gc.collect()
        self.assertEqual(engine.live_handles("symbol"), 0)
        self.assertEqual(engine.free_calls["symbol"], 4)


if __name__ == "__main__":
    unittest.main()
