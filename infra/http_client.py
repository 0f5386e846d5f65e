# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from utils.logger import logger as _default_logger

JSON_SEPARATORS = (",", ":")

class HttpError(Exception):
    def __init__(self, status: int, message: str, payload: Optional[dict] = None):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message
        self.payload = payload or {}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")

def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False, default=_json_default)

def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/")

def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]

def _error_message(payload: Any, text: str) -> str:
    if isinstance(payload, dict):
        msg = payload.get("message") or payload.get("error") or payload.get("msg")
        if msg:
            return str(msg)
    return text[:256]


class HttpClient:
    """
    JSON REST client for the marketplace API.

    Bearer token auth (token issuance/refresh belongs to the caller, use
    ``set_token``), per-request timeout, and exponential backoff with jitter
    for idempotent requests. Mutations are never retried here.
    """
    def __init__(self,
                 base_url: str,
                 token: Optional[str] = None,
                 *,
                 timeout_ms: int = 10_000,
                 max_attempts: int = 3,
                 backoff_ms: int = 200,
                 session: Optional[aiohttp.ClientSession] = None,
                 logger=None,
                 ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_ms = int(timeout_ms)
        self.max_attempts = int(max_attempts)
        self.backoff_ms = int(backoff_ms)
        self.log = logger or _default_logger
        self.session = session
        self._owned_session = session is None

        self.log.debug(
            f"HttpClient init base_url={self.base_url} token={_mask(self.token)} "
            f"timeout_ms={self.timeout_ms} max_attempts={self.max_attempts}"
        )

    @classmethod
    def from_settings(cls, api_cfg, **kwargs) -> "HttpClient":
        return cls(
            api_cfg.base_url,
            api_cfg.token or None,
            timeout_ms=api_cfg.timeout_ms,
            max_attempts=api_cfg.max_attempts,
            backoff_ms=api_cfg.backoff_ms,
            **kwargs,
        )

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0)
            self.session = aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True)
            self._owned_session = True
        return self.session

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Mapping[str, Any]] = None,
            headers: Optional[Mapping[str, str]] = None,
            timeout_ms: Optional[int] = None,
            retry: Optional[bool] = None,
        ) -> Any:
        """
        Single request entry point.
        - path: relative to base_url, starting with "/"
        - retry: defaults to True for GET only; retried on 429/5xx/network errors
        - raises HttpError; network failures and timeouts surface as status 599
        """
        assert path.startswith("/"), "path must start with /"
        method = method.upper()
        if retry is None:
            retry = method == "GET"
        url = self.base_url + path + _build_query(params)
        body_str = _json_dumps_compact(json_body) if json_body is not None else ""
        req_headers = self._headers(headers)
        session = self._ensure_session()

        timeout_ctx = aiohttp.ClientTimeout(total=(timeout_ms or self.timeout_ms) / 1000.0)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with session.request(
                    method,
                    url,
                    data=body_str if body_str else None,
                    headers=req_headers,
                    timeout=timeout_ctx,
                ) as resp:
                    text = await resp.text()
                    status = resp.status
                    try:
                        payload = json.loads(text) if text else {}
                    except json.JSONDecodeError:
                        payload = None

                    if status >= 400:
                        if retry and (status >= 500 or status == 429) and attempt < self.max_attempts:
                            await self._sleep_backoff(attempt)
                            continue
                        raise HttpError(status, _error_message(payload, text), payload if isinstance(payload, dict) else None)

                    if payload is None:
                        raise HttpError(status, f"invalid json: {text[:256]}")

                    if isinstance(payload, dict) and payload.get("success") is False:
                        raise HttpError(status, _error_message(payload, text), payload)
                    return payload
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retry and attempt < self.max_attempts:
                    self.log.warning(f"Network error: {e!r} when requesting {method} {url}, retrying...")
                    await self._sleep_backoff(attempt)
                    continue
                raise HttpError(599, f"Network error: {e!r}") from e
            except HttpError:
                raise
            except Exception as e:
                raise HttpError(599, f"Unexpected error: {e}") from e

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers ---------------------------------------------------
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_body: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("POST", path, json_body=json_body or {})
