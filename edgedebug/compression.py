import gzip
import logging
from dataclasses import replace
from typing import Dict, Optional

from .config import Config
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)


def parse_accept_encoding(value: str) -> Dict[str, float]:
    """Map each coding in an Accept-Encoding header to its q-value."""
    codings = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        name, *params = [p.strip() for p in item.split(";")]
        q = 1.0
        for param in params:
            key, _, val = param.partition("=")
            if key.strip().lower() == "q":
                try:
                    q = float(val)
                except ValueError:
                    q = 0.0
        codings[name.lower()] = q
    return codings


def accepts_gzip(value: Optional[str]) -> bool:
    if not value:
        return False
    codings = parse_accept_encoding(value)
    for name in ("gzip", "x-gzip"):
        if name in codings:
            return codings[name] > 0
    return codings.get("*", 0) > 0


class Gzip:
    def __init__(self, config: Config) -> None:
        self.config = config
        self.types = frozenset(t.lower() for t in config.gzip_types)

    def eligible(self, req: Request, resp: ResponseSpec) -> bool:
        if not self.config.gzip or resp.status != 200:
            return False
        if "Content-Encoding" in resp.headers:
            return False
        if resp.body_size < self.config.gzip_min_length:
            return False
        ctype = resp.headers.get("Content-Type", "").split(";", 1)[0].strip().lower()
        if ctype not in self.types:
            return False
        return accepts_gzip(req.headers.get("accept-encoding"))

    def apply(self, req: Request, resp: ResponseSpec) -> ResponseSpec:
        if not self.eligible(req, resp):
            return resp

        data = resp.body
        if data is None:
            with open(resp.body_path, "rb") as f:
                data = f.read()

        # mtime=0 keeps repeated responses byte-identical
        packed = gzip.compress(data, compresslevel=self.config.gzip_level, mtime=0)
        headers = dict(resp.headers)
        headers["Content-Encoding"] = "gzip"
        logger.debug("gzip %s: %d -> %d bytes", req.path, len(data), len(packed))
        return replace(resp, headers=headers, body=packed, body_path=None, body_size=len(packed))
