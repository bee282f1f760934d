from __future__ import annotations

import http.client
import json
import ssl
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import SetupError, TransportError


DEFAULT_USER_AGENT = "npm-follower/0 (python)"


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），两个 follower 共享同一实例。

    约定：
    - 不做重试：失败由 follower 按“每次尝试一个错误结果”上报，下一次 tick 再试
    - 统一超时、User-Agent
    - 4xx/5xx 不抛异常，原样返回 status，由调用方判定
    - 实例不持有可变状态，可被多个线程并发使用
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 5.0,
        user_agent: str = DEFAULT_USER_AGENT,
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    @property
    def user_agent(self) -> str:
        return self._user_agent

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))

        try:
            req = urllib.request.Request(url=url, headers=request_headers, method="GET")
        except ValueError as e:
            raise SetupError(f"creating request for {url!r}: {e}") from e

        try:
            with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
                resp_headers = {k: v for k, v in resp.headers.items()}
                return HttpResponse(
                    status=getattr(resp, "status", 200),
                    url=resp.geturl(),
                    headers=resp_headers,
                    body=resp.read(),
                )
        except urllib.error.HTTPError as e:
            try:
                body = e.read()
            except (OSError, http.client.HTTPException):
                body = b""
            return HttpResponse(
                status=e.code,
                url=e.geturl() or url,
                headers={k: v for k, v in (e.headers or {}).items()},
                body=body,
            )
        except (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError) as e:
            raise TransportError(f"doing request to {url}: {type(e).__name__}: {e}") from e


def with_query_params(url: str, params: Mapping[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    q = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    new_query = urllib.parse.urlencode(q)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))
