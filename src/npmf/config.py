from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .channel import DEFAULT_CAPACITY
from .http_utils import DEFAULT_USER_AGENT
from .sources.couch import REPLICATE_REGISTRY_URL
from .sources.rss import DEFAULT_WINDOW_LIMIT, RSS_ENDPOINT_URL


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_int(d: Mapping[str, Any], key: str, default: int | None) -> int | None:
    v = d.get(key, default)
    if v is None or isinstance(v, bool):
        return default
    try:
        return int(v)
    except Exception:
        return default


def _get_float(d: Mapping[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return float(v)
    except Exception:
        return default


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class FollowerConfig:
    """
    Follower 配置（不可变，构造时校验）。

    poll_interval_seconds:
      - 固定轮询间隔，默认 2 秒
    request_timeout_seconds:
      - 单个 HTTP 请求的 socket 超时，默认 5 秒
    fetch_timeout_seconds:
      - 单次拉取的硬上限（嵌套在 stop 信号之内），默认 10 秒，保证循环能及时回到计时器
    since:
      - 可选的起始 seq（仅 _changes）；为空或 0 时走冷启动
    limit:
      - RSS 窗口大小，默认 50
    user_agent:
      - 所有出站请求携带的 User-Agent
    channel_capacity:
      - 结果通道容量，默认 10
    """

    poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 5.0
    fetch_timeout_seconds: float = 10.0
    since: int | None = None
    limit: int = DEFAULT_WINDOW_LIMIT
    user_agent: str = DEFAULT_USER_AGENT
    registry_url: str = REPLICATE_REGISTRY_URL
    rss_url: str = RSS_ENDPOINT_URL
    channel_capacity: int = DEFAULT_CAPACITY

    def __post_init__(self) -> None:
        if self.poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be positive, got {self.poll_interval_seconds}")
        if self.request_timeout_seconds <= 0:
            raise ValueError(f"request_timeout_seconds must be positive, got {self.request_timeout_seconds}")
        if self.fetch_timeout_seconds <= 0:
            raise ValueError(f"fetch_timeout_seconds must be positive, got {self.fetch_timeout_seconds}")
        if self.since is not None and self.since < 0:
            raise ValueError(f"since must be non-negative, got {self.since}")
        if self.limit <= 0:
            raise ValueError(f"limit must be positive, got {self.limit}")
        if self.channel_capacity <= 0:
            raise ValueError(f"channel_capacity must be positive, got {self.channel_capacity}")
        if not self.user_agent:
            raise ValueError("user_agent must not be empty")

    def with_options(self, **changes: Any) -> FollowerConfig:
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    命令行总配置。

    user_agent_env:
      - 可选，从该环境变量读取 User-Agent，覆盖 follower.user_agent
    """

    follower: FollowerConfig
    user_agent_env: str | None = None

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)

    def effective_follower(self) -> FollowerConfig:
        ua = self.resolve_env(self.user_agent_env)
        if ua:
            return self.follower.with_options(user_agent=ua)
        return self.follower


def parse_config(raw: Any) -> AppConfig:
    root = _require_dict(raw, where="$")
    defaults = FollowerConfig()
    f = _require_dict(root.get("follower", {}), where="$.follower")
    follower = FollowerConfig(
        poll_interval_seconds=_get_float(f, "poll_interval_seconds", defaults.poll_interval_seconds),
        request_timeout_seconds=_get_float(f, "request_timeout_seconds", defaults.request_timeout_seconds),
        fetch_timeout_seconds=_get_float(f, "fetch_timeout_seconds", defaults.fetch_timeout_seconds),
        since=_get_int(f, "since", None),
        limit=_get_int(f, "limit", defaults.limit),
        user_agent=_get_str(f, "user_agent", defaults.user_agent),
        registry_url=_get_str(f, "registry_url", defaults.registry_url) or defaults.registry_url,
        rss_url=_get_str(f, "rss_url", defaults.rss_url) or defaults.rss_url,
        channel_capacity=_get_int(f, "channel_capacity", defaults.channel_capacity),
    )
    return AppConfig(follower=follower, user_agent_env=_get_str(root, "user_agent_env", None))


def load_config(config_path: str) -> AppConfig:
    """
    JSON 配置文件（示意）：
    {
      "follower": {
        "poll_interval_seconds": 5,
        "request_timeout_seconds": 5,
        "since": 0,
        "limit": 100
      },
      "user_agent_env": "NPMF_USER_AGENT"
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))
    return parse_config(raw)
