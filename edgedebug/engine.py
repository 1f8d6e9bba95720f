import logging
import re
import socket
from datetime import datetime, timezone
from typing import Optional, Tuple
from urllib.parse import unquote, urlsplit

from .compression import Gzip
from .errors import BadRequest, HeaderTooLarge, ProtocolError, VersionNotSupported
from .models import Request, ResponseSpec, simple_response
from .override import MethodOverride

logger = logging.getLogger(__name__)
access_log = logging.getLogger("edgedebug.access")

TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
VERSION_RE = re.compile(r"^HTTP/\d\.\d$")
LENGTH_RE = re.compile(r"[0-9]{1,19}")
CHUNK_SIZE_RE = re.compile(rb"[0-9A-Fa-f]{1,16}")
SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")


class Engine:
    def handle_connection(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        try:
            self.process(conn, addr)
        finally:
            try:
                conn.close()
            except OSError:
                pass

    def process(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        raise NotImplementedError

    def reject(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        try:
            conn.close()
        except OSError:
            pass


class HTTPEngine(Engine):
    def __init__(self, config, request_handler, server_name=None) -> None:
        self.config = config
        self.request_handler = request_handler
        self.override = MethodOverride(config, request_handler)
        self.gzip = Gzip(config)
        if server_name is None:
            server_name = f"edgedebug/{socket.gethostname()}"
        self.server_name = server_name

    def process(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        buf = bytearray()
        served = 0
        sending = False
        try:
            while True:
                idle = self.config.keepalive_timeout if served else self.config.recv_timeout
                try:
                    raw = self._read_head(conn, buf, idle)
                    if raw is None:
                        return
                    req = self._parse_request(raw)
                    self._discard_body(conn, buf, req)
                    resp = self.respond(req)
                except ProtocolError as e:
                    logger.debug("%s: %s", addr[0], e)
                    self._send(conn, addr, None, simple_response(e.status, e.reason), keep_alive=False)
                    self._lingering_close(conn)
                    return

                served += 1
                keep_alive = req.keep_alive and served < self.config.keepalive_requests
                if resp.status >= 500:
                    keep_alive = False
                sending = True
                keep_alive = self._send(conn, addr, req, resp, keep_alive)
                sending = False
                if not keep_alive:
                    return
        except (socket.timeout, TimeoutError):
            return
        except ConnectionError as e:
            logger.debug("%s: connection dropped: %s", addr[0], e)
            return
        except Exception:
            logger.exception("unexpected error serving %s", addr[0])
            if not sending:
                try:
                    self._send(conn, addr, None, simple_response(500, "Internal Server Error"), keep_alive=False)
                except OSError:
                    pass

    def respond(self, req: Request) -> ResponseSpec:
        """Build the response for a parsed request: static lookup, 405 override, compression."""
        try:
            resp = self.request_handler.handle(req)
            resp = self.override.apply(req, resp)
            return self.gzip.apply(req, resp)
        except ProtocolError:
            raise
        except Exception:
            logger.exception("failed to handle %s %s", req.method, req.target)
            return simple_response(500, "Internal Server Error")

    def reject(self, conn: socket.socket, addr: Tuple[str, int]) -> None:
        try:
            conn.settimeout(self.config.accept_timeout)
            self._send(conn, addr, None, simple_response(503, "Service Unavailable"), keep_alive=False)
        except OSError:
            pass
        finally:
            super().reject(conn, addr)

    def _lingering_close(self, conn: socket.socket) -> None:
        # drain unread input so close() does not reset the error response
        try:
            conn.shutdown(socket.SHUT_WR)
            conn.settimeout(self.config.lingering_timeout)
            while conn.recv(self.config.chunk_size):
                pass
        except OSError:
            pass

    def _read_head(self, conn: socket.socket, buf: bytearray, idle_timeout: float) -> Optional[bytes]:
        conn.settimeout(idle_timeout)
        while True:
            # empty lines before the request line are ignored
            while buf[:2] == b"\r\n":
                del buf[:2]
            end = buf.find(b"\r\n\r\n")
            if end >= 0:
                if end > self.config.max_header_bytes:
                    raise HeaderTooLarge()
                head = bytes(buf[:end])
                del buf[:end + 4]
                return head
            if len(buf) > self.config.max_header_bytes:
                raise HeaderTooLarge()
            chunk = conn.recv(self.config.chunk_size)
            if chunk == b"":
                return None
            buf.extend(chunk)
            conn.settimeout(self.config.recv_timeout)

    def _parse_request(self, raw: bytes) -> Request:
        lines = raw.split(b"\r\n")
        if not lines or not lines[0]:
            raise BadRequest("empty request")

        request_line = lines[0].decode("iso-8859-1")
        parts = request_line.split()
        if len(parts) != 3:
            raise BadRequest("bad request line")

        method, target, version = parts
        if not TOKEN_RE.match(method):
            raise BadRequest("bad method")
        if not VERSION_RE.match(version):
            raise BadRequest("bad http version")
        if version not in SUPPORTED_VERSIONS:
            raise VersionNotSupported(version)

        headers = {}
        for bline in lines[1:]:
            if not bline:
                continue
            line = bline.decode("iso-8859-1", errors="ignore")
            if ":" not in line:
                continue
            k, v = line.split(":", 1)
            headers[k.strip().lower()] = v.strip()

        if version == "HTTP/1.1" and "host" not in headers:
            raise BadRequest("missing host header")

        if target.startswith("/"):
            path = target.split("?", 1)[0]
        elif target.lower().startswith(("http://", "https://")):
            try:
                path = urlsplit(target).path or "/"
            except ValueError:
                raise BadRequest("bad request target")
        else:
            raise BadRequest("bad request target")
        path = unquote(path)

        return Request(method=method, target=target, path=path, version=version, headers=headers)

    def _discard_body(self, conn: socket.socket, buf: bytearray, req: Request) -> None:
        te = req.headers.get("transfer-encoding")
        if te is not None:
            if te.split(",")[-1].strip().lower() != "chunked":
                raise BadRequest("unsupported transfer-encoding")
            self._discard_chunked(conn, buf)
            return

        length = req.headers.get("content-length")
        if length is None:
            return
        if not LENGTH_RE.fullmatch(length):
            raise BadRequest("bad content-length")
        self._consume(conn, buf, int(length))

    def _discard_chunked(self, conn: socket.socket, buf: bytearray) -> None:
        while True:
            line = self._read_line(conn, buf)
            digits = line.split(b";", 1)[0].strip()
            if not CHUNK_SIZE_RE.fullmatch(digits):
                raise BadRequest("bad chunk size")
            size = int(digits, 16)
            if size == 0:
                while self._read_line(conn, buf):
                    pass
                return
            self._consume(conn, buf, size)
            if self._read_line(conn, buf):
                raise BadRequest("bad chunk terminator")

    def _read_line(self, conn: socket.socket, buf: bytearray) -> bytes:
        while True:
            end = buf.find(b"\r\n")
            if end >= 0:
                line = bytes(buf[:end])
                del buf[:end + 2]
                return line
            if len(buf) > self.config.max_header_bytes:
                raise BadRequest("line too long")
            self._fill(conn, buf)

    def _consume(self, conn: socket.socket, buf: bytearray, n: int) -> None:
        while n > 0:
            if not buf:
                self._fill(conn, buf)
            take = min(n, len(buf))
            del buf[:take]
            n -= take

    def _fill(self, conn: socket.socket, buf: bytearray) -> None:
        chunk = conn.recv(self.config.chunk_size)
        if chunk == b"":
            raise ConnectionResetError("client closed during request body")
        buf.extend(chunk)

    def _send(self, conn: socket.socket, addr: Tuple[str, int], req: Optional[Request], resp: ResponseSpec, keep_alive: bool) -> bool:
        method = req.method.upper() if req else "GET"
        head_only = (method == "HEAD")

        f = None
        if resp.body_path and resp.body is None and not head_only:
            try:
                f = open(resp.body_path, "rb")
            except OSError:
                logger.exception("failed to open %s", resp.body_path)
                resp = simple_response(500, "Internal Server Error")
                keep_alive = False

        try:
            headers = dict(resp.headers)
            headers.setdefault("Date", self._http_date())
            headers.setdefault("Server", self.server_name)
            headers.setdefault("Connection", "keep-alive" if keep_alive else "close")
            headers.setdefault("Content-Length", str(resp.body_size))
            if keep_alive:
                headers.setdefault("Keep-Alive", f"timeout={int(self.config.keepalive_timeout)}")

            status_line = f"HTTP/1.1 {resp.status} {resp.reason}\r\n"
            header_block = status_line + "".join(f"{k}: {v}\r\n" for k, v in headers.items()) + "\r\n"
            conn.sendall(header_block.encode("iso-8859-1"))

            sent = 0
            if not head_only:
                if resp.body is not None:
                    conn.sendall(resp.body)
                    sent = len(resp.body)
                elif f is not None:
                    sent = self._send_file(conn, f)
        finally:
            if f is not None:
                f.close()

        self._log_access(addr, req, resp.status, sent)
        return keep_alive

    def _send_file(self, conn: socket.socket, f) -> int:
        sent = 0
        while True:
            data = f.read(self.config.chunk_size)
            if not data:
                break
            conn.sendall(data)
            sent += len(data)
        return sent

    def _log_access(self, addr: Tuple[str, int], req: Optional[Request], status: int, sent: int) -> None:
        if req is None:
            line = "-"
            agent = "-"
        else:
            line = f"{req.method} {req.target} {req.version}"
            agent = req.headers.get("user-agent", "-")
        access_log.info('%s "%s" %d %d "%s"', addr[0], line, status, sent, agent)

    @staticmethod
    def _http_date() -> str:
        dt = datetime.now(timezone.utc)
        return dt.strftime("%a, %d %b %Y %H:%M:%S GMT")
