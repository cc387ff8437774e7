from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, BinaryIO, Optional, Sequence

from url_poller.config import YamlConfigLoader
from url_poller.config.models import AppConfig, ConfigLoadRequest
from url_poller.logging import init_logging
from url_poller.poller import Poller
from url_poller.trigger import CommandTrigger

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="url-poller",
        description="Poll a URL and run a command whenever its content changes.",
        epilog='Occurrences of "{}" in the command arguments are replaced by the cached file path; '
        "without one, the path is appended. With no command, the path is printed on each change.",
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("-i", "--interval", type=float, default=None, help="Seconds between fetches (default: 1)")
    parser.add_argument("-t", "--timeout", type=float, default=None, help="Seconds before a fetch fails (default: 15)")
    parser.add_argument(
        "-b", "--backoff", type=float, default=None, help="Seconds to wait after a failed fetch (default: 30)"
    )
    parser.add_argument("-d", "--cache-dir", default=None, help="Directory for the cached file (default: a temp dir)")
    parser.add_argument(
        "-f", "--master-file", default=None, help="Cached file: absolute path, or a file name inside --cache-dir"
    )
    parser.add_argument(
        "-m",
        "--mtime-updates",
        action="store_true",
        default=None,
        help="Run the command when only Last-Modified changes",
    )
    parser.add_argument("--proxy", default=None, metavar="HOST[:PORT]", help="HTTP proxy (default port: 3128)")
    parser.add_argument(
        "-k", "--keep-going", action="store_true", default=None, help="Keep polling when the command exits non-zero"
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="count", default=0, help="Log more (-vv for debug)")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log errors only")
    parser.add_argument("url", help="URL to poll")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments to run on change")
    return parser


def _split_proxy(value: Optional[str]) -> dict[str, Any]:
    if not value:
        return {}
    host, sep, port = value.rpartition(":")
    if not sep:
        return {"proxy_host": value}
    if not host or not port.isdigit():
        raise ValueError(f"invalid proxy, expected HOST[:PORT]: {value}")
    return {"proxy_host": host, "proxy_port": int(port)}


def _log_level(args: argparse.Namespace) -> Optional[str]:
    if args.quiet:
        return "ERROR"
    if args.verbose >= 2:
        return "DEBUG"
    if args.verbose == 1:
        return "INFO"
    return None


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "poller": {
            "target": {"url": args.url, **_split_proxy(args.proxy)},
            "policy": {
                "interval": args.interval,
                "timeout": args.timeout,
                "backoff": args.backoff,
                "mtime_updates": args.mtime_updates,
            },
            "cache": {"cache_dir": args.cache_dir, "master_file": args.master_file},
        },
        "logging": {"level": _log_level(args)},
        "command": {"argv": args.command or None, "keep_going": args.keep_going},
    }


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(yaml_path=args.config, overrides=_cli_overrides(args))
    return await loader.load(request)


def _print_path(fh: BinaryIO) -> bool:
    print(fh.name, flush=True)
    return True


def _install_signal_handlers(poller: Poller) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, poller.request_stop)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(poller.request_stop))


async def _run_poller(args: argparse.Namespace) -> int:
    config = await _load_config(args)
    init_logging(config.logging)

    if config.command.argv:
        callback = CommandTrigger(config.command.argv, keep_going=config.command.keep_going)
    else:
        callback = _print_path

    poller = Poller.from_settings(config.poller, logger=logging.getLogger("url_poller.poller"))
    _install_signal_handlers(poller)
    termination = await poller.run(callback)
    logger.info("Polling finished. url=%s reason=%s", config.poller.target.url, termination.value)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        _split_proxy(args.proxy)
    except ValueError as e:
        parser.error(str(e))
    try:
        return asyncio.run(_run_poller(args))
    except (ValueError, OSError) as e:
        # Configuration errors (including pydantic validation) and unusable filesystems.
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
