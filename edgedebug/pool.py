from __future__ import annotations

import logging
import queue
import socket
import threading
from dataclasses import dataclass
from typing import Tuple

from .config import Config
from .engine import Engine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    conn: socket.socket
    addr: Tuple[str, int]


class WorkerPool:
    """Fixed set of worker threads, one connection per worker at a time.

    ``config.workers`` bounds simultaneously served connections. Accepted
    connections wait in a queue of ``config.queue_size``; beyond that they
    are answered with 503 and closed.
    """

    def __init__(self, config: Config, engine: Engine) -> None:
        self.config = config
        self.engine = engine

        self._queue: queue.Queue[Task] = queue.Queue(maxsize=config.queue_size or 0)

        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._started = False
        self._lock = threading.Lock()

        # how often idle workers notice stop()
        self._poll_timeout = 0.2

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
            self._stop_event.clear()

            self._threads = [
                threading.Thread(target=self._worker_loop, name=f"slot-{i}", daemon=True)
                for i in range(self.config.workers)
            ]
            for t in self._threads:
                t.start()
        logger.debug("started %d workers", self.config.workers)

    def submit(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        if self._stop_event.is_set():
            self.engine.reject(conn, addr)
            return

        task = Task(conn=conn, addr=addr)
        try:
            self._queue.put(task, block=False)
            logger.debug("queued connection from %s:%d", addr[0], addr[1])
        except queue.Full:
            logger.warning("worker queue full; rejecting connection from %s:%d", addr[0], addr[1])
            self.engine.reject(conn, addr)

    def stop(self) -> None:
        self._stop_event.set()

        for t in self._threads:
            t.join(timeout=5)

        with self._lock:
            self._threads.clear()
            self._started = False

        # connections still queued after the workers exit
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break
            self.engine.reject(task.conn, task.addr)

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self._queue.get(timeout=self._poll_timeout)
            except queue.Empty:
                continue

            try:
                self._handle_connection(task)
            finally:
                self._queue.task_done()

    def _handle_connection(self, task: Task) -> None:
        try:
            logger.debug("handling connection from %s:%d", task.addr[0], task.addr[1])
            self.engine.handle_connection(task.conn, task.addr)
        except (socket.timeout, TimeoutError):
            return
        except Exception:
            logger.exception("unhandled exception serving %s:%d", task.addr[0], task.addr[1])
