import contextlib
import http.client
import socket
import threading

import pytest

from edgedebug.config import Config
from edgedebug.server import ThreadedHTTPServer

PAGE = b"<html><body>" + b"hello edge worker " * 200 + b"</body></html>"


@pytest.fixture
def docroot(tmp_path):
    root = tmp_path / "www"
    root.mkdir()
    (root / "index.html").write_bytes(b"<html>hi</html>")
    (root / "page.html").write_bytes(PAGE)
    (root / "style.css").write_bytes(b"body { color: red; }\n" * 10)
    (root / "data.bin").write_bytes(bytes(range(256)) * 4)
    (root / "htm").mkdir()
    (root / "htm" / "index.htm").write_bytes(b"<p>htm</p>")
    (root / "both").mkdir()
    (root / "both" / "index.html").write_bytes(b"<p>html</p>")
    (root / "both" / "index.htm").write_bytes(b"<p>htm</p>")
    (root / "empty").mkdir()
    (root / "docs").mkdir()
    (root / "docs" / "readme.txt").write_bytes(b"read me\n")
    (tmp_path / "secret.txt").write_bytes(b"outside the root")
    return root


@pytest.fixture
def config(docroot):
    return Config(
        host="127.0.0.1",
        port=0,
        root=str(docroot),
        workers=4,
        queue_size=16,
        recv_timeout=5.0,
        keepalive_timeout=5.0,
        accept_timeout=0.1,
    )


@contextlib.contextmanager
def running_server(config):
    srv = ThreadedHTTPServer(config)
    t = threading.Thread(target=srv.run, daemon=True)
    t.start()
    assert srv.wait_ready(5)
    try:
        yield srv
    finally:
        srv.stop()
        t.join(timeout=10)


@pytest.fixture
def server(config):
    with running_server(config) as srv:
        yield srv


def fetch(server, method, path, headers=None, body=None):
    host, port = server.server_address
    conn = http.client.HTTPConnection(host, port, timeout=5)
    try:
        conn.request(method, path, body=body, headers=headers or {})
        resp = conn.getresponse()
        return resp.status, {k.lower(): v for k, v in resp.getheaders()}, resp.read()
    finally:
        conn.close()


def raw_exchange(server, payload: bytes) -> bytes:
    """Send raw bytes and read until the server closes the connection."""
    sock = socket.create_connection(server.server_address, timeout=5)
    try:
        sock.sendall(payload)
        chunks = []
        while True:
            data = sock.recv(65536)
            if not data:
                break
            chunks.append(data)
        return b"".join(chunks)
    finally:
        sock.close()


def status_of(raw: bytes) -> int:
    return int(raw.split(b"\r\n", 1)[0].split()[1])
