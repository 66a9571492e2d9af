"""Test forward decisions of the transcript buffer."""

from legalease.services.transcript_buffer import TranscriptBuffer


def test_forwards_once_threshold_is_crossed():
    """Eight words stay buffered; five more cross the push threshold."""
    buf = TranscriptBuffer(max_words=500, threshold=10)
    assert buf.add_fragment("Hello this is a test of the assistant") is None
    forwarded = buf.add_fragment("please review the indemnification clause")
    assert forwarded == "Hello this is a test of the assistant please review the indemnification clause"
    assert len(forwarded.split()) == 13
    assert buf.last_sent_text == forwarded


def test_no_second_forward_without_new_words():
    buf = TranscriptBuffer(threshold=2)
    assert buf.add_fragment("one two three") == "one two three"
    assert buf.add_fragment("four") is None
    assert buf.add_fragment("five") == "one two three four five"


def test_empty_fragments_never_forward():
    buf = TranscriptBuffer(threshold=1)
    assert buf.add_fragment("first words") == "first words"
    assert buf.add_fragment("") is None
    assert buf.add_fragment("   ") is None
    assert buf.last_sent_text == "first words"


def test_window_keeps_trailing_words():
    buf = TranscriptBuffer(max_words=5, threshold=1)
    buf.add_fragment("a b c d e f g")
    assert buf.text == "c d e f g"
    assert buf.word_count == 5
    assert buf.total_words == 7


def test_growth_is_counted_after_truncation():
    """A full window still forwards once enough new words arrive."""
    buf = TranscriptBuffer(max_words=4, threshold=3)
    assert buf.add_fragment("w1 w2 w3 w4") == "w1 w2 w3 w4"
    assert buf.add_fragment("w5 w6") is None
    assert buf.add_fragment("w7") == "w4 w5 w6 w7"


def test_discard_ignores_late_fragments():
    buf = TranscriptBuffer(threshold=1)
    buf.discard()
    assert buf.add_fragment("late words") is None
    assert buf.text == ""
    assert not buf.is_active
