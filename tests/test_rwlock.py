"""Tests for the reader/writer lock."""

import threading
import time

import pytest

from linkfeed.rwlock import RWLock


def test_readers_share_the_lock():
    lock = RWLock()
    inside = threading.Barrier(3, timeout=5)

    def reader():
        with lock.read_locked():
            inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for thread in threads:
        thread.start()
    # Only passes if both readers hold the lock at once.
    inside.wait()
    for thread in threads:
        thread.join(timeout=5)


def test_writer_excludes_readers():
    lock = RWLock()
    events = []
    lock.acquire_write()

    def reader():
        with lock.read_locked():
            events.append("read")

    thread = threading.Thread(target=reader)
    thread.start()
    time.sleep(0.05)
    events.append("write done")
    lock.release_write()
    thread.join(timeout=5)

    assert events == ["write done", "read"]


def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    events = []
    lock.acquire_read()

    def writer():
        with lock.write_locked():
            events.append("write")

    def late_reader():
        with lock.read_locked():
            events.append("read")

    writer_thread = threading.Thread(target=writer)
    writer_thread.start()
    time.sleep(0.05)
    reader_thread = threading.Thread(target=late_reader)
    reader_thread.start()
    time.sleep(0.05)
    assert events == []

    lock.release_read()
    writer_thread.join(timeout=5)
    reader_thread.join(timeout=5)
    assert events == ["write", "read"]


def test_release_without_holding():
    lock = RWLock()
    with pytest.raises(RuntimeError):
        lock.release_read()
    with pytest.raises(RuntimeError):
        lock.release_write()
