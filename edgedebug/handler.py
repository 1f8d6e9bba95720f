import logging
import mimetypes
import os
from email.utils import formatdate
from typing import Optional

from .config import Config
from .errors import BadRequest
from .models import Request, ResponseSpec, simple_response

logger = logging.getLogger(__name__)

STATIC_METHODS = ("GET", "HEAD")


class FileHandler:
    """Serves files from a read-only document root.

    Resolution runs before method gating, so a missing path is a 404 for
    every method and only resolvable paths can produce a 405.
    """

    def __init__(self, config: Config) -> None:
        self.config = config
        self.root_real = os.path.realpath(config.root)

    def handle(self, req: Request) -> ResponseSpec:
        try:
            abs_path = self._resolve(req.path)
        except PermissionError as e:
            logger.debug("forbidden %s: %s", req.path, e)
            return simple_response(403, "Forbidden")

        if abs_path is None:
            return simple_response(404, "Not Found")

        try:
            st = os.stat(abs_path)
        except OSError:
            return simple_response(404, "Not Found")

        if req.method.upper() not in STATIC_METHODS:
            return simple_response(405, "Method Not Allowed", headers={"Allow": ", ".join(STATIC_METHODS)})

        return ResponseSpec(
            200,
            "OK",
            headers={
                "Content-Type": self.content_type(abs_path),
                "Last-Modified": formatdate(st.st_mtime, usegmt=True),
            },
            body_path=abs_path,
            body_size=st.st_size,
        )

    def content_type(self, path: str) -> str:
        ctype, _ = mimetypes.guess_type(path)
        ctype = ctype or "application/octet-stream"
        if ctype.startswith("text/") or ctype in self.config.charset_types:
            ctype = f"{ctype}; charset={self.config.charset}"
        return ctype

    def _resolve(self, url_path: str) -> Optional[str]:
        abs_path = self._safe_join(self.root_real, url_path)

        if os.path.isdir(abs_path):
            abs_path = self._index_file(abs_path)
            if abs_path is None:
                return None

        if not os.path.exists(abs_path):
            return None

        if not os.path.isfile(abs_path) or not os.access(abs_path, os.R_OK):
            raise PermissionError("not readable")

        return abs_path

    def _index_file(self, directory: str) -> Optional[str]:
        for name in self.config.index_files:
            candidate = os.path.join(directory, name)
            if os.path.exists(candidate):
                return candidate
        return None

    def _safe_join(self, root_real: str, url_path: str) -> str:
        if "\x00" in url_path:
            raise BadRequest("null byte in path")
        rel = url_path.lstrip("/")
        norm = os.path.normpath(rel)
        candidate = os.path.join(root_real, norm)
        real = os.path.realpath(candidate)

        root_prefix = root_real.rstrip(os.sep) + os.sep
        if real != root_real and not real.startswith(root_prefix):
            raise PermissionError("escape root")
        return real
