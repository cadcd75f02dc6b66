"""End-to-end cycles over the fake shop, plus configuration loading."""

import tempfile
import unittest
from unittest.mock import patch

from flavortown_monitor import cli
from flavortown_monitor.cli import run_cycle_async
from flavortown_monitor.config import load_settings
from flavortown_monitor.crawler import RegionCrawler
from flavortown_monitor.errors import ConfigError, RegionMismatchError, TransportError
from flavortown_monitor.image_cache import CACHE_KEY, ImageCache
from flavortown_monitor.merger import CatalogMerger
from flavortown_monitor.models import Region
from flavortown_monitor.storage import FileStore, SnapshotStore
from tests.fakes import FakeShop, FakeUploader, RecordingNotifier, make_settings


REGIONS = [Region.UNITED_STATES, Region.EUROPE]


class TestRunCycle(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.settings = make_settings(storage_path=self.tmp.name)
        self.store = FileStore(self.tmp.name)
        self.snapshots = SnapshotStore(self.store)
        self.uploader = FakeUploader()
        self.shop = FakeShop({
            "US": [dict(id=1, title="A", price=5, blob_id=11)],
            "EU": [dict(id=1, title="A", price=5, blob_id=11)],
        })

    async def _run(self, notifier, dry_run=False):
        image_cache = ImageCache(self.store, self.uploader)
        merger = CatalogMerger(RegionCrawler(self.shop, self.settings), image_cache, regions=REGIONS)
        return await run_cycle_async(self.settings, merger, image_cache, self.snapshots, notifier, dry_run=dry_run)

    async def test_first_run_saves_baseline_silently(self) -> None:
        notifier = RecordingNotifier()

        result = await self._run(notifier)

        self.assertTrue(result["baseline"])
        self.assertEqual(notifier.sent, [])
        self.assertEqual([item.id for item in self.snapshots.load_latest()], [1])
        self.assertIsNotNone(self.store.get(CACHE_KEY))

    async def test_new_item_is_announced_then_saved(self) -> None:
        await self._run(RecordingNotifier())
        for region in ("US", "EU"):
            self.shop.listings[region].append(dict(id=2, title="B", price=10, blob_id=12))
        notifier = RecordingNotifier()

        result = await self._run(notifier)

        self.assertEqual(result["changes"], "1 new, 0 updated, 0 removed")
        self.assertEqual(len(notifier.sent), 1)
        self.assertEqual([item.id for item in self.snapshots.load_latest()], [1, 2])
        # Item 1's image came from the cache on the second run
        self.assertEqual(len(self.uploader.calls), 2)

    async def test_unchanged_shop_sends_nothing(self) -> None:
        await self._run(RecordingNotifier())
        snapshot_count = len(self.store.keys("snapshots/"))
        notifier = RecordingNotifier()

        result = await self._run(notifier)

        self.assertEqual(result["messages"], 0)
        self.assertEqual(notifier.sent, [])
        self.assertEqual(len(self.store.keys("snapshots/")), snapshot_count)

    async def test_failed_send_keeps_previous_snapshot(self) -> None:
        await self._run(RecordingNotifier())
        self.shop.listings["US"][0] = dict(id=1, title="A", price=7, blob_id=11)

        with self.assertRaises(TransportError):
            await self._run(RecordingNotifier(fail_on=1))

        latest = self.snapshots.load_latest()
        self.assertEqual(latest[0].prices[Region.UNITED_STATES], 5)

    async def test_region_desync_aborts_without_snapshot(self) -> None:
        self.shop.stuck_regions = ("EU",)

        with self.assertRaises(RegionMismatchError):
            await self._run(RecordingNotifier())

        self.assertIsNone(self.snapshots.load_latest())

    async def test_dry_run_writes_no_snapshot(self) -> None:
        result = await self._run(RecordingNotifier(), dry_run=True)

        self.assertTrue(result["baseline"])
        self.assertIsNone(self.snapshots.load_latest())


class TestMain(unittest.TestCase):

    def test_missing_config_exits_non_zero(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            self.assertEqual(cli.main([]), 1)

    def test_unexpected_failure_alerts_and_exits_non_zero(self) -> None:
        env = {"COOKIE": "c", "WEBHOOK_URL": "w", "STATUS_WEBHOOK_URL": "https://discord.example/status"}
        with patch.dict("os.environ", env, clear=True), \
                patch.object(cli, "setup_logging", return_value="monitor.log"), \
                patch.object(cli, "run_async", side_effect=OSError("disk full")), \
                patch.object(cli, "send_status_webhook") as alert:
            self.assertEqual(cli.main([]), 1)

        alert.assert_called_once()
        url, message = alert.call_args.args
        self.assertEqual(url, "https://discord.example/status")
        self.assertIn("disk full", message)


class TestLoadSettings(unittest.TestCase):

    def test_defaults(self) -> None:
        settings = load_settings({"COOKIE": "c=1", "WEBHOOK_URL": "https://hooks.example/x"})

        self.assertEqual(settings.base_url, "https://flavortown.hackclub.com/")
        self.assertEqual(settings.cdn_key, "beans")
        self.assertIsNone(settings.status_webhook_url)
        self.assertEqual(settings.max_concurrent_requests, 10)
        self.assertEqual(settings.url("shop"), "https://flavortown.hackclub.com/shop")

    def test_base_url_gets_trailing_slash(self) -> None:
        settings = load_settings({"COOKIE": "c", "WEBHOOK_URL": "w", "BASE_URL": "https://shop.example/ft"})
        self.assertEqual(settings.url("shop"), "https://shop.example/ft/shop")

    def test_missing_cookie(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({"WEBHOOK_URL": "https://hooks.example/x"})

    def test_bad_number(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({"COOKIE": "c", "WEBHOOK_URL": "w", "MAX_CONCURRENT_REQUESTS": "lots"})
