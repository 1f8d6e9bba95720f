from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class Request:
    method: str
    target: str
    path: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def keep_alive(self) -> bool:
        conn = self.headers.get("connection", "").lower()
        tokens = {t.strip() for t in conn.split(",")}
        if self.version == "HTTP/1.0":
            return "keep-alive" in tokens
        return "close" not in tokens


@dataclass(frozen=True)
class ResponseSpec:
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    body_path: Optional[str] = None
    body_size: int = 0


def simple_response(status: int, reason: str, headers: Optional[Dict[str, str]] = None) -> ResponseSpec:
    body = f"{status} {reason}\n".encode("ascii")
    hdrs = {"Content-Type": "text/plain; charset=utf-8"}
    if headers:
        hdrs.update(headers)
    return ResponseSpec(status=status, reason=reason, headers=hdrs, body=body, body_size=len(body))
