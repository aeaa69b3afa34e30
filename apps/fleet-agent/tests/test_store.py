import json
import pathlib
import sys
import tempfile
import unittest


ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fleet_agent.identity import IdentityContext, proxy_for
from fleet_agent.store import AccountDirectory, IdentityRecord, RecordStore, derive_worker_id


class WorkerIdTests(unittest.TestCase):
    def test_worker_id_is_base64_of_address_and_stable(self):
        address = "0xAbC123"
        self.assertEqual(derive_worker_id(address), "MHhBYkMxMjM=")
        self.assertEqual(derive_worker_id(address), derive_worker_id(address))
        self.assertEqual(IdentityRecord.new(address).worker_id, derive_worker_id(address))

    def test_worker_id_survives_reload(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "data.json"
            store = RecordStore(path)
            created = store.get_or_create("0xdead")
            store.save()
            reloaded = RecordStore.load(path).get("0xdead")
            self.assertEqual(reloaded.worker_id, created.worker_id)
            self.assertEqual(reloaded.session_id, created.session_id)


class RecordStoreTests(unittest.TestCase):
    def test_round_trip_preserves_every_record(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "data.json"
            store = RecordStore(path)
            store.get_or_create("0x1")
            store.set_token("0x1", "tok-1")
            store.assign_resources("0x1", "NVIDIA L4", "12.50")
            store.get_or_create("0x2")
            store.save()

            reloaded = RecordStore.load(path)
            self.assertEqual(len(reloaded), 2)
            for address in ("0x1", "0x2"):
                self.assertEqual(reloaded.get(address), store.get(address))

    def test_writes_flat_address_keyed_json(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "data.json"
            store = RecordStore(path)
            store.set_token("0x1", "tok-1")
            raw = json.loads(path.read_text())
            self.assertEqual(set(raw), {"0x1"})
            self.assertEqual(
                set(raw["0x1"]),
                {"address", "workerID", "id", "token", "gpu", "storage"},
            )
            self.assertEqual(raw["0x1"]["token"], "tok-1")

    def test_missing_file_is_an_empty_store(self):
        with tempfile.TemporaryDirectory() as td:
            store = RecordStore.load(pathlib.Path(td) / "absent.json")
            self.assertEqual(len(store), 0)

    def test_corrupt_file_is_an_empty_store(self):
        with tempfile.TemporaryDirectory() as td:
            path = pathlib.Path(td) / "data.json"
            path.write_text("{not json")
            self.assertEqual(len(RecordStore.load(path)), 0)

    def test_set_token_never_overwrites(self):
        store = RecordStore(None)
        self.assertTrue(store.set_token("0x1", "first"))
        self.assertFalse(store.set_token("0x1", "second"))
        self.assertEqual(store.token_for("0x1"), "first")

    def test_assign_resources_only_once(self):
        store = RecordStore(None)
        self.assertTrue(store.assign_resources("0x1", "NVIDIA L4", "1.00"))
        self.assertFalse(store.assign_resources("0x1", "NVIDIA H100 PCIe", "2.00"))
        self.assertEqual((store.get("0x1").gpu, store.get("0x1").storage), ("NVIDIA L4", "1.00"))


class ProxyAssignmentTests(unittest.TestCase):
    def test_index_modulo_proxy_count(self):
        proxies = ["http://p0", "http://p1", "http://p2"]
        for i in range(10):
            self.assertEqual(proxy_for(i, proxies), proxies[i % 3])

    def test_no_proxies_means_direct(self):
        self.assertIsNone(proxy_for(4, []))
        ctx = IdentityContext.build(4, "0x1", [], use_proxy=True)
        self.assertIsNone(ctx.requests_proxies())
        self.assertIn("Proxy: False", ctx.tag())

    def test_proxy_only_used_when_enabled(self):
        off = IdentityContext.build(1, "0x1", ["http://p0", "http://p1"], use_proxy=False)
        on = IdentityContext.build(1, "0x1", ["http://p0", "http://p1"], use_proxy=True)
        self.assertIsNone(off.active_proxy)
        self.assertEqual(on.requests_proxies(), {"http": "http://p1", "https": "http://p1"})

    def test_tag_includes_account_id_once_known(self):
        accounts = AccountDirectory()
        ctx = IdentityContext.build(0, "0x1", [], use_proxy=False)
        self.assertEqual(ctx.tag(accounts), "[1] Proxy: False")
        accounts.set("0x1", 42)
        self.assertEqual(ctx.tag(accounts), "[1] AccountID 42, Proxy: False")


if __name__ == "__main__":
    unittest.main()
