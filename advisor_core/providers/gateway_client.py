"""AI 网关 Provider 适配器。

网关提供 OpenAI 兼容的 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/stream/response_format。
流式响应不在这里解析，open_stream 只负责检查状态码并把原始字节交给上层的解码器。

状态码映射：
- 429 -> RateLimitError（不重试）
- 402 -> QuotaExceededError（不重试）
- 500/502/503/504 以及建连失败、响应开始前超时 -> TransientGatewayError（可重试）
- 其他 >= 400 -> ApiError
"""

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from advisor_core.config.settings import settings
from advisor_core.domain.exceptions import (
    ApiError,
    NetworkError,
    QuotaExceededError,
    RateLimitError,
    TransientGatewayError,
    ValidationError,
)
from advisor_core.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from advisor_core.providers.registry import GATEWAY_CONFIG, ModelConfig

TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})


class GatewayStream:
    """一次已通过状态检查的流式响应，持有自己的 AsyncClient。"""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.StreamError as e:
            if self._closed:
                return
            raise NetworkError(code="NETWORK_ERROR", message=f"stream interrupted: {e}")
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"stream interrupted: {e}")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class GatewayClient:
    """AI 网关 Provider 客户端实现。"""

    name = "gateway"

    def __init__(self, cfg=settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = cfg
        # 测试时注入 httpx.MockTransport
        self._transport = transport

    # ---- 流式 ----

    async def open_stream(self, req: ChatRequest) -> GatewayStream:
        headers = self._headers()
        payload = self._build_payload(req, stream=True)
        client = self._client()
        request = client.build_request("POST", self._url(), json=payload, headers=headers)
        try:
            resp = await client.send(request, stream=True)
        except httpx.RequestError as e:
            await client.aclose()
            raise self._map_request_error(e)
        except asyncio.CancelledError:
            await client.aclose()
            raise
        if resp.status_code >= 400:
            try:
                body = (await resp.aread()).decode("utf-8", errors="replace")
            finally:
                await resp.aclose()
                await client.aclose()
            raise self._map_status(resp.status_code, body)
        return GatewayStream(client, resp)

    # ---- 非流式 ----

    async def complete(self, req: ChatRequest) -> ChatResult:
        payload = self._build_payload(req, stream=False)
        headers = self._headers()
        async with self._client() as client:
            try:
                resp = await client.post(self._url(), json=payload, headers=headers)
            except httpx.RequestError as e:
                raise self._map_request_error(e)
        if resp.status_code >= 400:
            raise self._map_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(code="API_ERROR", message="gateway returned a non-JSON body", http_status=resp.status_code)
        return self._parse_response(data, req)

    # ---- 辅助方法 ----

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.http_timeout,
            trust_env=False,
            transport=self._transport,
        )

    def _url(self) -> str:
        base = getattr(self._settings, "gateway_base_url", None) or GATEWAY_CONFIG.base_url
        return f"{base.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        api_key = getattr(self._settings, "gateway_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="GATEWAY_API_KEY not set")
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, req: ChatRequest, stream: bool) -> Dict[str, Any]:
        model_cfg: ModelConfig = GATEWAY_CONFIG.model(req.model)
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": stream,
        }
        temperature = req.temperature if req.temperature is not None else model_cfg.default_temperature
        if temperature is not None:
            payload["temperature"] = temperature
            payload["top_p"] = req.top_p
        max_tokens = req.max_tokens or model_cfg.max_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if req.response_format:
            payload["response_format"] = {"type": req.response_format}
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage = None
        usage_raw = data.get("usage") or {}
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    @staticmethod
    def _map_status(status: int, body: str):
        if status == 429:
            return RateLimitError(code="RATE_LIMIT", message="gateway rate limit", http_status=429)
        if status == 402:
            return QuotaExceededError(code="QUOTA_EXCEEDED", message="gateway credits depleted", http_status=402)
        if status in TRANSIENT_STATUSES:
            return TransientGatewayError(code="GATEWAY_UNAVAILABLE", message=body[:500], http_status=status)
        return ApiError(code="API_ERROR", message=body[:500], http_status=status)

    @staticmethod
    def _map_request_error(e: httpx.RequestError):
        if isinstance(e, (httpx.TimeoutException, httpx.ConnectError)):
            return TransientGatewayError(code="GATEWAY_UNAVAILABLE", message=str(e) or type(e).__name__, http_status=503)
        return NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
