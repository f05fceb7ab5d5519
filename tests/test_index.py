import threading
from datetime import datetime, timedelta, timezone

from clipvault.services.index import ClipboardIndex
from clipvault.utils.ids import Kind

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestBuckets:
    def test_entries_newest_first(self, make_screenshot):
        index = ClipboardIndex()
        for i in (2, 0, 1):
            index.upsert("u1", Kind.SCREENSHOTS, make_screenshot(f"s{i}", minutes=i))
        assert [e.id for e in index.entries("u1", Kind.SCREENSHOTS)] == ["s2", "s1", "s0"]

    def test_upsert_replaces_same_id(self, make_screenshot):
        index = ClipboardIndex()
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1"))
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1", has_text=True))
        entries = index.entries("u1", Kind.SCREENSHOTS)
        assert len(entries) == 1
        assert entries[0].has_text is True

    def test_find_and_remove(self, make_screenshot):
        index = ClipboardIndex()
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1"))
        assert index.find("u1", Kind.SCREENSHOTS, "s1") is not None
        removed = index.remove("u1", Kind.SCREENSHOTS, ["s1", "missing"])
        assert [e.id for e in removed] == ["s1"]
        assert index.find("u1", Kind.SCREENSHOTS, "s1") is None
        assert index.is_tombstoned("screenshots/u1/s1.png")

    def test_evict_oldest_returns_oldest_first(self, make_screenshot):
        index = ClipboardIndex()
        for i in range(5):
            index.upsert("u1", Kind.SCREENSHOTS, make_screenshot(f"s{i}", minutes=i))
        evicted = index.evict_oldest("u1", Kind.SCREENSHOTS, 3)
        assert [e.id for e in evicted] == ["s0", "s1"]
        assert [e.id for e in index.entries("u1", Kind.SCREENSHOTS)] == ["s4", "s3", "s2"]

    def test_evict_within_limit_is_noop(self, make_screenshot):
        index = ClipboardIndex()
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1"))
        assert index.evict_oldest("u1", Kind.SCREENSHOTS, 3) == []

    def test_bucket_lock_per_user_and_kind(self):
        index = ClipboardIndex()
        assert index.bucket_lock("u1", Kind.OCR) is index.bucket_lock("u1", Kind.OCR)
        assert index.bucket_lock("u1", Kind.OCR) is not index.bucket_lock("u1", Kind.SCREENSHOTS)
        assert index.bucket_lock("u1", Kind.OCR) is not index.bucket_lock("u2", Kind.OCR)

    def test_concurrent_upserts_are_not_lost(self, make_screenshot):
        index = ClipboardIndex()

        def writer(worker):
            for i in range(25):
                entry = make_screenshot(f"w{worker}-{i}", minutes=worker * 100 + i)
                with index.bucket_lock("u1", Kind.SCREENSHOTS):
                    index.upsert("u1", Kind.SCREENSHOTS, entry)

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert index.count(Kind.SCREENSHOTS, "u1") == 200


class TestCounters:
    def test_counters_follow_buckets(self, make_screenshot, make_ocr_entry):
        index = ClipboardIndex()
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1", has_text=True))
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s2"))
        index.upsert("u2", Kind.SCREENSHOTS, make_screenshot("s3", user_id="u2", has_text=True))
        index.upsert("u2", Kind.OCR, make_ocr_entry("o1", "hello", user_id="u2"))

        assert index.total_screenshots == 3
        assert index.total_ocr_entries == 1
        assert index.total_text_extracted == 2
        assert index.text_count("u1") == 1

        index.evict_oldest("u1", Kind.SCREENSHOTS, 0)
        assert index.total_screenshots == 1
        assert index.total_text_extracted == 1

    def test_last_updated_tracks_writes(self, make_screenshot):
        index = ClipboardIndex()
        assert index.last_updated is None
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1", minutes=5))
        assert index.last_updated == BASE_TIME + timedelta(minutes=5)


class TestUsers:
    def test_touch_user_creates_then_updates(self):
        index = ClipboardIndex()
        index.touch_user("u1", "alice", {"hostname": "a"}, seen_at=BASE_TIME)
        later = BASE_TIME + timedelta(hours=1)
        index.touch_user("u1", "alice2", {"hostname": "b"}, seen_at=later)
        user = index.user("u1")
        assert user.username == "alice2"
        assert user.device_info == {"hostname": "b"}
        assert user.first_seen == BASE_TIME
        assert user.last_active == later

    def test_user_returns_copy(self):
        index = ClipboardIndex()
        index.touch_user("u1", "alice")
        index.user("u1").username = "mallory"
        assert index.user("u1").username == "alice"

    def test_drop_user_if_idle_respects_recent_touch(self):
        index = ClipboardIndex()
        revision = index.revision
        index.touch_user("u1", "alice")
        assert index.drop_user_if_idle("u1", revision) is False
        assert index.drop_user_if_idle("u1", index.revision) is True
        assert index.has_user("u1") is False

    def test_clear_user(self, make_screenshot, make_ocr_entry):
        index = ClipboardIndex()
        index.touch_user("u1", "alice")
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1"))
        index.upsert("u1", Kind.OCR, make_ocr_entry("o1", "hi"))
        removed = index.clear_user("u1")
        assert [e.id for e in removed[Kind.SCREENSHOTS]] == ["s1"]
        assert [e.id for e in removed[Kind.OCR]] == ["o1"]
        assert index.has_user("u1") is False
        assert index.total_screenshots == 0

    def test_snapshot_shape(self, make_screenshot):
        index = ClipboardIndex()
        index.touch_user("u1", "alice", seen_at=BASE_TIME)
        index.upsert("u1", Kind.SCREENSHOTS, make_screenshot("s1"))
        snap = index.snapshot()
        assert snap["totalScreenshots"] == 1
        assert snap["users"]["u1"]["username"] == "alice"
        assert [e["id"] for e in snap["users"]["u1"]["screenshots"]] == ["s1"]
