import os
import tempfile
import unittest
from unittest.mock import patch

from arbmatch import storage
from arbmatch.storage import (
    IndexBusyError,
    IndexGuard,
    VectorIndex,
    get_index_stats,
    read_index_snapshot,
    record_index_meta,
    replace_index,
)


class VectorIndexTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "index.db")

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_upsert_list_and_count(self) -> None:
        index = VectorIndex(self.db_path, "kalshi")
        index.upsert(
            [
                {"id": "K1", "vector": [1.0, 0.0], "metadata": {"title": "one"}},
                {"id": "K2", "vector": [0.0, 1.0], "metadata": {"title": "two"}},
            ]
        )
        self.assertEqual(index.count(), 2)
        self.assertEqual([item["id"] for item in index.list_all()], ["K1", "K2"])
        self.assertEqual(index.list_all()[1]["metadata"], {"title": "two"})

    def test_replacing_an_item_keeps_its_position(self) -> None:
        index = VectorIndex(self.db_path, "kalshi")
        index.upsert([{"id": "K1", "vector": [1.0, 0.0]}, {"id": "K2", "vector": [0.0, 1.0]}])
        index.upsert([{"id": "K1", "vector": [0.0, 1.0], "metadata": {"title": "new"}}])
        items = index.list_all()
        self.assertEqual([item["id"] for item in items], ["K1", "K2"])
        self.assertEqual(items[0]["vector"], [0.0, 1.0])
        self.assertEqual(index.count(), 2)

    def test_query_orders_by_cosine_with_stable_ties(self) -> None:
        index = VectorIndex(self.db_path, "polymarket")
        index.upsert(
            [
                {"id": "P1", "vector": [0.0, 1.0]},
                {"id": "P2", "vector": [1.0, 0.0]},
                {"id": "P3", "vector": [2.0, 0.0]},
                {"id": "P4", "vector": [1.0, 1.0]},
            ]
        )
        results = index.query([1.0, 0.0], k=3)
        self.assertEqual([item["id"] for item in results], ["P2", "P3", "P4"])
        self.assertAlmostEqual(results[0]["score"], 1.0)
        self.assertEqual(index.query([1.0, 0.0], k=0), [])

    def test_namespaces_are_isolated(self) -> None:
        kalshi = VectorIndex(self.db_path, "kalshi")
        poly = VectorIndex(self.db_path, "polymarket")
        kalshi.upsert([{"id": "X", "vector": [1.0]}])
        poly.upsert([{"id": "X", "vector": [1.0]}, {"id": "Y", "vector": [1.0]}])
        kalshi.clear()
        self.assertEqual(kalshi.count(), 0)
        self.assertEqual(poly.count(), 2)

    def test_stats(self) -> None:
        VectorIndex(self.db_path, "kalshi").upsert([{"id": "K1", "vector": [1.0]}])
        record_index_meta(self.db_path, "kalshi", 1)
        stats = get_index_stats(self.db_path)
        self.assertEqual(stats["namespaces"]["kalshi"]["item_count"], 1)
        self.assertEqual(stats["total_items"], 1)
        self.assertIsNotNone(stats["last_updated"])
        self.assertFalse(stats["indexing"])

    def test_replace_swaps_namespaces_and_records_counts(self) -> None:
        VectorIndex(self.db_path, "kalshi").upsert([{"id": "OLD", "vector": [1.0]}])
        counts = replace_index(
            self.db_path,
            {"kalshi": [{"id": "K1", "vector": [1.0]}, {"id": "K2", "vector": [0.5]}], "polymarket": []},
        )
        self.assertEqual(counts, {"kalshi": 2, "polymarket": 0})
        self.assertEqual([item["id"] for item in VectorIndex(self.db_path, "kalshi").list_all()], ["K1", "K2"])
        self.assertEqual(get_index_stats(self.db_path)["namespaces"]["kalshi"]["item_count"], 2)

    def test_failed_replace_rolls_back(self) -> None:
        VectorIndex(self.db_path, "kalshi").upsert([{"id": "K1", "vector": [1.0]}, {"id": "K2", "vector": [1.0]}])
        VectorIndex(self.db_path, "polymarket").upsert([{"id": "P1", "vector": [1.0]}])
        with self.assertRaises(ValueError):
            replace_index(
                self.db_path,
                {"kalshi": [{"id": "K9", "vector": [1.0]}], "polymarket": [{"id": "P9", "vector": ["bad"]}]},
            )
        self.assertEqual([item["id"] for item in VectorIndex(self.db_path, "kalshi").list_all()], ["K1", "K2"])
        self.assertEqual(VectorIndex(self.db_path, "polymarket").count(), 1)

    def test_snapshot_ignores_writes_made_during_the_read(self) -> None:
        VectorIndex(self.db_path, "kalshi").upsert([{"id": "K1", "vector": [1.0]}])
        VectorIndex(self.db_path, "polymarket").upsert([{"id": "P1", "vector": [1.0]}, {"id": "P2", "vector": [1.0]}])
        select_items = storage._select_items

        def select_then_clear(conn, namespace):
            items = select_items(conn, namespace)
            if namespace == "kalshi":
                VectorIndex(self.db_path, "polymarket").clear()
            return items

        with patch("arbmatch.storage._select_items", side_effect=select_then_clear):
            snapshot = read_index_snapshot(self.db_path, ("kalshi", "polymarket"))
        self.assertEqual([item["id"] for item in snapshot["polymarket"]], ["P1", "P2"])
        self.assertEqual(VectorIndex(self.db_path, "polymarket").count(), 0)

    def test_snapshot_refused_while_indexing(self) -> None:
        with IndexGuard(self.db_path).indexing():
            with self.assertRaises(IndexBusyError):
                read_index_snapshot(self.db_path, ("kalshi",))


class IndexGuardTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self._tmpdir.name, "guard.db")

    def tearDown(self) -> None:
        self._tmpdir.cleanup()

    def test_indexing_blocks_readers(self) -> None:
        guard = IndexGuard(self.db_path)
        self.assertFalse(guard.is_indexing())
        with guard.indexing():
            self.assertTrue(guard.is_indexing())
            self.assertTrue(IndexGuard(self.db_path).is_indexing())
            with self.assertRaises(IndexBusyError):
                guard.ensure_available()
            self.assertTrue(get_index_stats(self.db_path)["indexing"])
        self.assertFalse(guard.is_indexing())
        guard.ensure_available()

    def test_second_rebuild_is_rejected(self) -> None:
        guard = IndexGuard(self.db_path)
        with guard.indexing():
            with self.assertRaises(IndexBusyError):
                with IndexGuard(self.db_path).indexing():
                    pass
        self.assertFalse(guard.is_indexing())

    def test_flag_is_cleared_after_failure(self) -> None:
        guard = IndexGuard(self.db_path)
        with self.assertRaises(RuntimeError):
            with guard.indexing():
                raise RuntimeError("boom")
        self.assertFalse(guard.is_indexing())

    def test_persisted_flag_and_staleness(self) -> None:
        guard = IndexGuard(self.db_path)
        # Simulates a rebuild running in another process.
        guard._set_flag(True)
        self.assertTrue(IndexGuard(self.db_path).is_indexing())
        self.assertFalse(IndexGuard(self.db_path, ttl_seconds=-1).is_indexing())
        guard._set_flag(False)
        self.assertFalse(guard.is_indexing())


if __name__ == "__main__":
    unittest.main()
