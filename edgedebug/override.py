import logging
from dataclasses import replace

from .config import Config
from .models import Request, ResponseSpec

logger = logging.getLogger(__name__)


class MethodOverride:
    """Turns a static-serving 405 into the resource a GET would return.

    Lets clients exercise POST flows against a static backend. Only a 405
    produced by the file handler is rewritten; every other status passes
    through untouched.
    """

    def __init__(self, config: Config, handler) -> None:
        self.enabled = config.method_override
        self.methods = None
        if config.override_methods is not None:
            self.methods = frozenset(m.upper() for m in config.override_methods)
        self.handler = handler

    def applies(self, req: Request, resp: ResponseSpec) -> bool:
        if not self.enabled or resp.status != 405:
            return False
        return self.methods is None or req.method.upper() in self.methods

    def apply(self, req: Request, resp: ResponseSpec) -> ResponseSpec:
        if not self.applies(req, resp):
            return resp

        rewritten = self.handler.handle(replace(req, method="GET"))
        if rewritten.status != 200:
            return resp

        logger.debug("%s %s: 405 rewritten to 200", req.method, req.path)
        return rewritten
