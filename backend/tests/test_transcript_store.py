"""Test the keyed latest-transcript store."""

from legalease.services.transcript_store import EMPTY_SLOT, LatestTranscriptStore


class Clock:
    def __init__(self, now=1_000_000):
        self.now = now

    def __call__(self):
        return self.now


def test_empty_store_reads_empty_slot():
    store = LatestTranscriptStore()
    assert store.read() == EMPTY_SLOT
    assert store.read().to_dict() == {"text": "", "meetingId": "", "timestamp": 0}


def test_read_returns_exact_written_text():
    store = LatestTranscriptStore(clock=Clock())
    text = "  Counsel: the §4.2 clause «indemnity» applies.\n"
    store.write(text, "abc-defg-hij")
    slot = store.read("abc-defg-hij")
    assert slot.text == text
    assert slot.meetingId == "abc-defg-hij"
    assert slot.timestamp == 1_000_000


def test_unkeyed_read_returns_last_write():
    clock = Clock()
    store = LatestTranscriptStore(clock=clock)
    store.write("first meeting", "m1")
    clock.now += 10
    store.write("second meeting", "m2")
    assert store.read().text == "second meeting"
    assert store.read("m1").text == "first meeting"


def test_missing_meeting_id_defaults_to_unknown():
    store = LatestTranscriptStore()
    store.write("text")
    assert store.read().meetingId == "unknown"
    assert store.meeting_ids() == ["unknown"]


def test_overwrite_is_last_write_wins():
    store = LatestTranscriptStore()
    store.write("one", "m1")
    store.write("two", "m1")
    assert store.read("m1").text == "two"


def test_idle_meetings_are_evicted():
    clock = Clock()
    store = LatestTranscriptStore(ttl_seconds=60, clock=clock)
    store.write("old", "m1")
    clock.now += 30_000
    store.write("fresh", "m2")
    clock.now += 40_000
    assert store.evict_expired() == ["m1"]
    assert store.read("m1") == EMPTY_SLOT
    assert store.read().text == "fresh"


def test_evicting_latest_clears_unkeyed_read():
    clock = Clock()
    store = LatestTranscriptStore(ttl_seconds=1, clock=clock)
    store.write("gone", "m1")
    clock.now += 5_000
    assert store.read() == EMPTY_SLOT


def test_clear_forgets_all_meetings():
    store = LatestTranscriptStore(clock=Clock())
    store.write("a", "m1")
    store.write("b", "m2")
    store.clear()
    assert store.meeting_ids() == []
    assert store.read() == EMPTY_SLOT
