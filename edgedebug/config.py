from dataclasses import dataclass
from typing import FrozenSet, Optional, Tuple


CHARSET_TYPES = (
    "text/html",
    "text/xml",
    "text/plain",
    "text/vnd.wap.wml",
    "application/javascript",
    "application/rss+xml",
)


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 80
    root: str = "."
    workers: int = 64
    queue_size: int = 128
    backlog: int = 128
    recv_timeout: float = 60.0
    keepalive_timeout: float = 65.0
    keepalive_requests: int = 100
    lingering_timeout: float = 5.0
    accept_timeout: float = 1.0
    max_header_bytes: int = 65536
    chunk_size: int = 64 * 1024
    index_files: Tuple[str, ...] = ("index.html", "index.htm")
    charset: str = "utf-8"
    charset_types: Tuple[str, ...] = CHARSET_TYPES
    gzip: bool = True
    gzip_types: Tuple[str, ...] = ("text/html",)
    gzip_min_length: int = 20
    gzip_level: int = 1
    method_override: bool = True
    # None means every method the static handler rejects
    override_methods: Optional[FrozenSet[str]] = None
    debug: bool = False
