import socket
import threading

from edgedebug.config import Config
from edgedebug.engine import Engine
from edgedebug.pool import WorkerPool


class RecordingEngine(Engine):
    def __init__(self):
        self.handled = []
        self.rejected = []
        self.done = threading.Event()

    def process(self, conn, addr):
        self.handled.append(addr)
        self.done.set()

    def reject(self, conn, addr):
        self.rejected.append(addr)
        super().reject(conn, addr)


def _conn():
    a, b = socket.socketpair()
    b.close()
    return a


def test_full_queue_rejects_connection():
    engine = RecordingEngine()
    pool = WorkerPool(Config(workers=1, queue_size=1), engine)

    pool.submit(_conn(), ("10.0.0.1", 1))
    pool.submit(_conn(), ("10.0.0.2", 2))

    assert engine.rejected == [("10.0.0.2", 2)]
    pool.stop()
    assert engine.rejected == [("10.0.0.2", 2), ("10.0.0.1", 1)]


def test_workers_handle_queued_connections():
    engine = RecordingEngine()
    pool = WorkerPool(Config(workers=2, queue_size=4), engine)
    pool.start()
    try:
        pool.submit(_conn(), ("10.0.0.1", 1))
        assert engine.done.wait(5)
    finally:
        pool.stop()

    assert engine.handled == [("10.0.0.1", 1)]
    assert engine.rejected == []


def test_submit_after_stop_rejects():
    engine = RecordingEngine()
    pool = WorkerPool(Config(workers=1), engine)
    pool.start()
    pool.stop()

    pool.submit(_conn(), ("10.0.0.3", 3))

    assert engine.rejected == [("10.0.0.3", 3)]
