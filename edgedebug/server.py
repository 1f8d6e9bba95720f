import logging
import socket
import threading
from typing import Optional, Tuple

from .config import Config
from .engine import Engine, HTTPEngine
from .handler import FileHandler
from .pool import WorkerPool

logger = logging.getLogger(__name__)


class ThreadedHTTPServer:
    def __init__(self, config: Config) -> None:
        self.config = config

        self._listen_sock: Optional[socket.socket] = None
        self._engine: Optional[Engine] = None
        self._pool: Optional[WorkerPool] = None
        self.server_address: Optional[Tuple[str, int]] = None

        self._stop_event = threading.Event()
        self._ready = threading.Event()

    def run(self) -> None:
        self._stop_event.clear()

        self._listen_sock = self._create_listen_socket()
        self.server_address = self._listen_sock.getsockname()[:2]
        self._engine = HTTPEngine(self.config, FileHandler(self.config))
        self._pool = WorkerPool(self.config, self._engine)

        self._pool.start()
        logger.info(
            "serving %s on %s:%d with %d workers",
            self.config.root, self.server_address[0], self.server_address[1], self.config.workers,
        )
        self._ready.set()

        try:
            self._accept_loop()
        finally:
            self._cleanup()
            logger.info("server stopped")

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def stop(self) -> None:
        self._stop_event.set()

        if self._listen_sock is not None:
            try:
                self._listen_sock.close()
            except OSError:
                pass

    def _cleanup(self) -> None:
        self.stop()
        if self._pool is not None:
            self._pool.stop()

        self._listen_sock = None
        self._pool = None
        self._engine = None
        self._ready.clear()

    def _create_listen_socket(self) -> socket.socket:
        # rebind immediately after a container restart
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        try:
            sock.bind((self.config.host, self.config.port))
            sock.listen(self.config.backlog)
        except OSError:
            sock.close()
            raise

        sock.settimeout(self.config.accept_timeout)

        return sock

    def _accept_loop(self) -> None:
        """Hand accepted connections to the pool until stop() closes the listener."""
        assert self._listen_sock is not None
        assert self._pool is not None

        while not self._stop_event.is_set():
            try:
                conn, addr = self._listen_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            try:
                conn.settimeout(self.config.recv_timeout)
                conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            except OSError:
                try:
                    conn.close()
                except OSError:
                    pass
                continue

            try:
                self._pool.submit(conn, addr)
            except Exception:
                logger.exception("failed to submit connection from %s", addr[0])
                try:
                    conn.close()
                except OSError:
                    pass
