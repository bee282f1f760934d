from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal

from .config import AppConfig, FollowerConfig, load_config
from .errors import ColdStartError
from .follower import ChangesFollower, Follower, RssFollower
from .models import ChangeEvent, FeedItem, Result


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="npmf", description="npm registry follower (_changes / RSS)")
    p.add_argument("--config", default=None, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env NPMF_LOG_LEVEL or INFO",
    )
    p.add_argument("--interval", type=float, default=None, help="Polling interval seconds (default 2)")
    p.add_argument("--timeout", type=float, default=None, help="HTTP request timeout seconds (default 5)")
    p.add_argument("--user-agent", default=None, help="User-Agent sent with every request")
    p.add_argument(
        "--max-results",
        type=int,
        default=0,
        help="Stop after this many results (items or errors). 0 means run until interrupted.",
    )

    sub = p.add_subparsers(dest="feed", required=True)
    changes = sub.add_parser("changes", help="Follow the replicate _changes feed")
    changes.add_argument("--since", type=int, default=None, help="Start after this sequence (default: cold start)")
    rss = sub.add_parser("rss", help="Follow the registry RSS feed")
    rss.add_argument("--limit", type=int, default=None, help="RSS window size (default 50)")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def resolve_follower_config(args: argparse.Namespace) -> FollowerConfig:
    app = load_config(args.config) if args.config else AppConfig(follower=FollowerConfig())
    config = app.effective_follower()
    overrides: dict[str, object] = {}
    if args.interval is not None:
        overrides["poll_interval_seconds"] = args.interval
    if args.timeout is not None:
        overrides["request_timeout_seconds"] = args.timeout
    if args.user_agent:
        overrides["user_agent"] = args.user_agent
    if getattr(args, "since", None) is not None:
        overrides["since"] = args.since
    if getattr(args, "limit", None) is not None:
        overrides["limit"] = args.limit
    return config.with_options(**overrides) if overrides else config


def build_follower(feed: str, config: FollowerConfig) -> Follower:
    if feed == "changes":
        return ChangesFollower(config)
    if feed == "rss":
        return RssFollower(config)
    raise ValueError(f"unknown feed: {feed}")


def format_result(result: Result) -> str:
    item = result.item
    if isinstance(item, ChangeEvent):
        suffix = " (deleted)" if item.deleted else ""
        payload = json.dumps(item.to_json_dict(), ensure_ascii=False, separators=(",", ":"))
        return f"{item.id}: seq={item.seq} rev={item.latest_revision()}{suffix} {payload}"
    if isinstance(item, FeedItem):
        return str(item)
    return repr(item)


async def follow(follower: Follower, stop: asyncio.Event, *, max_results: int = 0) -> int:
    """
    消费结果直到通道关闭；返回退出码（冷启动失败为 1）。
    """
    logger = logging.getLogger("npmf")
    received = 0
    exit_code = 0
    async for result in follower.connect(stop):
        received += 1
        if result.error is not None:
            if isinstance(result.error, ColdStartError):
                exit_code = 1
            logger.error("error polling: %s", result.error)
        else:
            logger.info("%s", format_result(result))
        if max_results and received >= max_results:
            stop.set()
    logger.info(
        "follower stopped: polls=%d fetch_errors=%d items_emitted=%d cursor=%r",
        follower.stats.polls,
        follower.stats.fetch_errors,
        follower.stats.items_emitted,
        follower.source.position(),
    )
    return exit_code


async def _amain(args: argparse.Namespace) -> int:
    config = resolve_follower_config(args)
    follower = build_follower(args.feed, config)
    logger = logging.getLogger("npmf")
    logger.info(
        "npmf start: feed=%s poll_interval_seconds=%g request_timeout_seconds=%g user_agent=%s",
        args.feed,
        config.poll_interval_seconds,
        config.request_timeout_seconds,
        config.user_agent,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            pass
    return await follow(follower, stop, max_results=max(0, args.max_results))


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("NPMF_LOG_LEVEL")
    logging.basicConfig(
        level=_resolve_log_level(args.log_level or env_log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return asyncio.run(_amain(args))


if __name__ == "__main__":
    raise SystemExit(main())
