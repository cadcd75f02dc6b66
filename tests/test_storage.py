import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from flavortown_monitor.errors import EncodingError
from flavortown_monitor.models import Accessory, Region, catalog_from_json
from flavortown_monitor.storage import FileStore, SnapshotStore
from tests.fakes import make_item


class TestFileStore(unittest.TestCase):

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.store = FileStore(self.tmp.name)

    def test_get_missing_key(self) -> None:
        self.assertIsNone(self.store.get("nothing.json"))

    def test_put_replaces_value(self) -> None:
        self.store.put("dir/key.bin", b"one")
        self.store.put("dir/key.bin", b"two")
        self.assertEqual(self.store.get("dir/key.bin"), b"two")
        self.assertEqual(self.store.keys("dir/"), ["dir/key.bin"])

    def test_rejects_escaping_keys(self) -> None:
        with self.assertRaises(ValueError):
            self.store.put("../outside", b"x")


class TestSnapshotStore(unittest.TestCase):

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.snapshots = SnapshotStore(FileStore(self.tmp.name), retention=2)
        self.t0 = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_no_snapshot_yet(self) -> None:
        self.assertIsNone(self.snapshots.load_latest())

    def test_round_trips_every_field(self) -> None:
        item = make_item(
            4,
            title="Sticker",
            description="Shiny",
            prices={Region.UNITED_STATES: 5, Region.GLOBAL: 7},
            accessories=[Accessory(id=1, name="Holo", prices={Region.INDIA: 2})],
            long_description="Very shiny",
            remaining_stock=0,
        )
        plain = make_item(2)

        self.snapshots.write_new([item, plain], now=self.t0)

        self.assertEqual(self.snapshots.load_latest(), [plain, item])

    def test_latest_snapshot_wins_and_old_ones_pruned(self) -> None:
        for i in range(4):
            self.snapshots.write_new([make_item(i)], now=self.t0 + timedelta(minutes=i))

        self.assertEqual([item.id for item in self.snapshots.load_latest()], [3])
        self.assertEqual(len(self.snapshots.store.keys("snapshots/")), 2)

    def test_unknown_region_code_rejected(self) -> None:
        raw = b'{"items": [{"id": 1, "title": "A", "description": "", "image_url": "u", "image_id": 1, "prices": {"ZZ": 1}}]}'
        with self.assertRaises(EncodingError):
            catalog_from_json(raw)

    def test_truncated_snapshot_rejected(self) -> None:
        with self.assertRaises(EncodingError):
            catalog_from_json(b'{"items": [')
