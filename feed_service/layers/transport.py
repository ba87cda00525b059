"""
Layer 1 – 传输层
真实网络请求：超时控制 + 429 / 5xx 指数退避重试（tenacity）。
只返回状态码与原始响应体，状态判断与 JSON 解码由缓存层负责。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from feed_service.config import settings
from feed_service.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class RequestOptions:
    """请求选项；body 参与缓存指纹计算"""
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    body: Any = None


@dataclass
class UpstreamResponse:
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


# ── 重试判定 ──────────────────────────────────────────────

def _retryable_status(response: httpx.Response) -> bool:
    return response.status_code == 429 or response.status_code >= 500


def _retryable_error(exc: BaseException) -> bool:
    # 超时不重试
    return isinstance(exc, httpx.HTTPError) and not isinstance(exc, httpx.TimeoutException)


def _last_outcome(retry_state: RetryCallState) -> httpx.Response:
    """重试用尽：返回最后一次响应，或重新抛出最后一次网络错误"""
    return retry_state.outcome.result()


class _RetryAfterWait:
    """优先采用上游 Retry-After（不超过 ceiling），否则按指数退避"""

    def __init__(self, fallback: Callable[[RetryCallState], float], ceiling: float):
        self._fallback = fallback
        self._ceiling = ceiling

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            delay = _retry_after(outcome.result())
            if delay is not None:
                return min(delay, self._ceiling)
        return self._fallback(retry_state)


class HttpTransport:
    """基于 httpx.AsyncClient 的请求原语"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        max_backoff: Optional[float] = None,
    ):
        self._timeout = settings.REQUEST_TIMEOUT if timeout is None else timeout
        self._client = client or httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        self._max_retries = settings.MAX_RETRIES if max_retries is None else max_retries
        self._max_backoff = settings.MAX_BACKOFF if max_backoff is None else max_backoff

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, target: str, options: RequestOptions) -> httpx.Response:
        kwargs: Dict[str, Any] = {"headers": options.headers, "params": options.params}
        if isinstance(options.body, (str, bytes)):
            kwargs["content"] = options.body
        elif options.body is not None:
            kwargs["json"] = options.body
        return await self._client.request(options.method, target, **kwargs)

    def _retrying(self, target: str, retries: int) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            reason = outcome.exception() if outcome.failed else f"上游返回 {outcome.result().status_code}"
            logger.warning(f"{reason}，{retry_state.next_action.sleep}s 后重试: {target}")

        return AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=_RetryAfterWait(wait_exponential(multiplier=1, max=self._max_backoff), self._max_backoff),
            retry=retry_if_exception(_retryable_error) | retry_if_result(_retryable_status),
            before_sleep=log_retry,
            retry_error_callback=_last_outcome,
        )

    async def perform_request(
        self,
        target: str,
        options: Optional[RequestOptions] = None,
        retry: bool = True,
    ) -> UpstreamResponse:
        """
        发出真实请求

        Args:
            target: 请求 URL
            options: 请求选项
            retry: 是否在 429 / 5xx / 网络错误时退避重试

        Raises:
            TransportError: 网络错误或超时，且重试已用尽
        """
        options = options or RequestOptions()
        retries = self._max_retries if retry else 0

        try:
            response = await self._retrying(target, retries)(self._send, target, options)
        except httpx.TimeoutException as exc:
            raise TransportError(target, f"请求超时: {target}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(target, f"请求失败（已重试 {retries} 次）: {target}: {exc}") from exc

        return UpstreamResponse(
            status=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )
