import threading

from xrestsync import APIObject
from xrestsync._private.object.state import PrivateObjectState, ReadWriteLock


def _start(target) -> threading.Thread:
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread


def test_readers_run_together():
    lock = ReadWriteLock()
    other_read = threading.Event()

    def reader():
        with lock.read():
            other_read.set()

    with lock.read():
        thread = _start(reader)
        # Another reader gets in while we still hold the read lock.
        assert other_read.wait(2)
    thread.join(2)


def test_writer_blocks_readers():
    lock = ReadWriteLock()
    read_done = threading.Event()

    def reader():
        with lock.read():
            read_done.set()

    with lock.write():
        thread = _start(reader)
        assert not read_done.wait(0.1)

    assert read_done.wait(2)
    thread.join(2)


def test_writer_waits_for_readers():
    lock = ReadWriteLock()
    write_done = threading.Event()

    def writer():
        with lock.write():
            write_done.set()

    with lock.read():
        thread = _start(writer)
        assert not write_done.wait(0.1)

    assert write_done.wait(2)
    thread.join(2)


def test_snapshot_is_a_copy():
    state = PrivateObjectState({"name": "x"}, "1")
    state.api_data = {"nested": {"a": 1}}
    snapshot = state.snapshot()
    snapshot["api_data"]["nested"]["a"] = 2
    snapshot["data"]["name"] = "y"

    assert state.api_data == {"nested": {"a": 1}}
    assert state.data == {"name": "x"}
    assert snapshot["id"] == "1"


def test_inspectors_wait_for_adopt(client):
    obj = APIObject(client, path="/api/objects", data={"id": "1", "name": "x"})
    inspected = []

    def inspect():
        inspected.append(obj.snapshot())
        inspected.append(obj.compute_delta())

    # Adopting holds the write lock, inspectors have to wait for it.
    with obj._state.lock.write():
        thread = _start(inspect)
        thread.join(0.1)
        assert inspected == []
        obj._state.api_data = {"id": "1", "name": "y"}

    thread.join(2)
    assert inspected[0]["api_data"] == {"id": "1", "name": "y"}
    assert inspected[1] == ({"id": "1", "name": "y"}, True)

    # Inspectors run while a read lock is held elsewhere (ie: another inspector).
    inspected.clear()
    with obj._state.lock.read():
        thread = _start(inspect)
        thread.join(2)
        assert len(inspected) == 2
