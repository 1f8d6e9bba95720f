import argparse
import logging
import os
import signal
import sys

from edgedebug.config import Config
from edgedebug.server import ThreadedHTTPServer as Server

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def directory(value: str) -> str:
    if not os.path.isdir(value):
        raise argparse.ArgumentTypeError(f"not a directory: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Static debug server for local edge worker testing")
    parser.add_argument("--host", "-H", type=str, default="0.0.0.0", help="host to listen on")
    parser.add_argument("--port", "-p", type=int, default=80, help="port to listen on")
    parser.add_argument("--root", "-r", type=directory, default=".", help="directory to serve (read-only)")
    parser.add_argument("--workers", "-w", type=int, default=64, help="simultaneous connection slots")
    parser.add_argument("--queue-size", type=int, default=128, help="connections waiting for a free slot")
    parser.add_argument("--keepalive-timeout", type=float, default=65.0, help="idle keep-alive timeout in seconds")
    parser.add_argument("--no-gzip", action="store_true", help="disable response compression")
    parser.add_argument("--gzip-type", action="append", dest="gzip_types", metavar="TYPE",
                        help="content type to compress (repeatable, default text/html)")
    parser.add_argument("--gzip-min-length", type=int, default=20, help="smallest body to compress")
    parser.add_argument("--no-method-override", action="store_true", help="return 405 for non-GET methods")
    parser.add_argument("--override-method", action="append", dest="override_methods", metavar="METHOD",
                        help="limit the 405 override to this method (repeatable, default all)")
    parser.add_argument("--debug", "-D", action="store_true", help="enable debug mode")
    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    kwargs = {}
    if args.gzip_types:
        kwargs["gzip_types"] = tuple(args.gzip_types)
    if args.override_methods:
        kwargs["override_methods"] = frozenset(m.upper() for m in args.override_methods)
    return Config(
        host=args.host,
        port=args.port,
        root=args.root,
        workers=args.workers,
        queue_size=args.queue_size,
        keepalive_timeout=args.keepalive_timeout,
        gzip=not args.no_gzip,
        gzip_min_length=args.gzip_min_length,
        method_override=not args.no_method_override,
        debug=args.debug,
        **kwargs,
    )


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = config_from_args(args)

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    server = Server(config)

    def shutdown(signum, frame):
        logging.getLogger(__name__).info("received signal %d, stopping", signum)
        server.stop()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)
    server.run()


if __name__ == "__main__":
    main()
