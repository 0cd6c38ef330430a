import os
import re
import signal
import threading
import time
import uuid

import pytest

from xorcast.shared import (
    COLOR_EMISOR_HEADER,
    COLOR_RECEPTOR_HEADER,
    MAX_BUFFER_SIZE,
    MAX_FILE_SIZE,
    MAX_RECEIVERS,
    SEGMENT_DIR_ENV,
    BufferEntry,
    ReceiverInfo,
    SegmentError,
    SharedSegment,
    UsageError,
    display_char,
    format_char_info,
    install_stop_handler,
    parse_key,
    parse_mode,
)


@pytest.fixture
def segment(tmp_path, monkeypatch):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path))
    seg = SharedSegment.create(f"seg-{uuid.uuid4().hex}", 4, b"hola mundo")
    yield seg
    seg.close()
    seg.unlink()


def test_create_and_attach_share_content(segment):
    with SharedSegment.attach(segment.name) as other:
        assert other.buffer_size == 4
        assert other.source_content == b"hola mundo"
        assert other.size == segment.size
        assert other.write_index == 0
        assert other.active_receivers == 0


@pytest.mark.parametrize("size", [0, -1, MAX_BUFFER_SIZE + 1])
def test_create_rejects_bad_buffer_size(tmp_path, monkeypatch, size):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path))
    with pytest.raises(UsageError):
        SharedSegment.create("bad", size, b"")


def test_create_accepts_max_buffer_size(tmp_path, monkeypatch):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path))
    with SharedSegment.create("big", MAX_BUFFER_SIZE, b"x") as seg:
        assert seg.buffer_size == MAX_BUFFER_SIZE


def test_source_is_truncated(tmp_path, monkeypatch):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path))
    with SharedSegment.create("long", 2, b"a" * (MAX_FILE_SIZE + 50)) as seg:
        assert seg.source_size == MAX_FILE_SIZE - 1
        assert seg.source_content == b"a" * (MAX_FILE_SIZE - 1)


def test_attach_missing_raises(tmp_path, monkeypatch):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path))
    with pytest.raises(SegmentError):
        SharedSegment.attach("nope")


def test_initial_semaphore_values(segment):
    assert segment.semaphore("empty_slots").value() == segment.buffer_size
    assert segment.semaphore("producer_mutex").value() == 1
    assert segment.semaphore("receiver_registry_mutex").value() == 1
    assert segment.semaphore("process_finished").value() == 0
    assert all(segment.slot_semaphore(i).value() == 1 for i in range(segment.buffer_size))
    assert all(segment.receiver_semaphore(s).value() == 0 for s in range(MAX_RECEIVERS))


def test_unknown_semaphore(segment):
    with pytest.raises(KeyError):
        segment.semaphore("missing")


def test_acquire_and_release(segment):
    sem = segment.semaphore("producer_mutex")
    assert sem.acquire(timeout=0) is True
    assert sem.value() == 0
    assert sem.acquire(timeout=0.01) is False
    sem.release()
    assert sem.value() == 1


def test_semaphore_visible_across_attachments(segment):
    with SharedSegment.attach(segment.name) as other:
        other.semaphore("process_finished").release()
        assert segment.semaphore("process_finished").acquire(timeout=0) is True
        assert other.semaphore("process_finished").value() == 0


def test_acquire_blocks_until_release(segment):
    sem = segment.semaphore("process_finished")
    assert sem.acquire(timeout=0.02) is False
    releaser = threading.Timer(0.05, sem.release)
    start = time.monotonic()
    releaser.start()
    acquired = sem.acquire(timeout=5)
    waited = time.monotonic() - start
    releaser.join(timeout=5)
    assert acquired is True
    assert waited >= 0.04
    assert sem.value() == 0


def test_entry_round_trip(segment):
    entry = BufferEntry(ascii_val=0xAB, index=2, timestamp=1_700_000_000, read_count=3)
    segment.write_entry(2, entry)
    with SharedSegment.attach(segment.name) as other:
        assert other.read_entry(2) == entry
    assert segment.read_entry(1) == BufferEntry()


def test_entry_index_out_of_range(segment):
    with pytest.raises(IndexError):
        segment.read_entry(segment.buffer_size)
    with pytest.raises(IndexError):
        segment.slot_semaphore(-1)


def test_receiver_round_trip_keeps_semaphore(segment):
    segment.receiver_semaphore(5).release()
    info = ReceiverInfo(pid=os.getpid(), read_index=3, is_manual=True)
    segment.write_receiver(5, info)
    assert segment.read_receiver(5) == info
    assert segment.receiver_semaphore(5).value() == 1
    with pytest.raises(IndexError):
        segment.read_receiver(MAX_RECEIVERS)


def test_counters_are_shared(segment):
    with SharedSegment.attach(segment.name) as other:
        other.total_chars_transferred = 12
        other.shutdown_requested = 1
        assert segment.total_chars_transferred == 12
        assert segment.shutdown_requested == 1


@pytest.mark.parametrize(
    "char, shown",
    [("\n", "\\n"), ("\r", "\\r"), ("\t", "\\t"), (" ", "⎵"), ("A", "A"), ("~", "~")],
)
def test_display_char_known(char, shown):
    assert display_char(char) == shown
    assert display_char(ord(char)) == shown


@pytest.mark.parametrize("code", [0, 7, 127, 200])
def test_display_char_unprintable(code):
    assert display_char(code) == "?"


def test_format_char_info_roles():
    emitted = format_char_info("Emisor", 1234, "a", 3, time.time())
    received = format_char_info("Receptor", 1234, "a", 3, time.time())
    assert emitted.startswith(COLOR_EMISOR_HEADER + "Emisor  ")
    assert received.startswith(COLOR_RECEPTOR_HEADER + "Receptor")
    for line in (emitted, received):
        assert "1234" in line
        assert "'a'" in line
        assert "[3]" in line
        assert re.search(r"\d\d:\d\d:\d\d", line)


def test_parse_mode():
    assert parse_mode("manual") == (True, 0)
    assert parse_mode("250") == (False, 250)
    assert parse_mode("abc") == (False, 0)
    with pytest.raises(UsageError):
        parse_mode("-5")


def test_parse_key():
    assert parse_key("42") == 42
    assert parse_key("-1") == 255
    assert parse_key("nada") == 0
    key = parse_key("300")
    assert 0 <= key <= 255
    assert all((b ^ key) ^ key == b for b in range(256))


def test_install_stop_handler():
    previous = signal.getsignal(signal.SIGUSR1)
    try:
        stop = install_stop_handler(signal.SIGUSR1)
        assert not stop.is_set()
        os.kill(os.getpid(), signal.SIGUSR1)
        assert stop.wait(timeout=2)
    finally:
        signal.signal(signal.SIGUSR1, previous)