"""Generative snapshot source backed by the Gemini `generateContent` API."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Mapping

import httpx

from .config import GeneratorConfig
from .models import Snapshot
from .years import format_year, normalize_year


_RETRYABLE_HTTP_STATUS = {429, 500, 502, 503, 504}
_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)

_LOGGER = logging.getLogger("chronoatlas.generator")

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "year": {"type": "INTEGER"},
        "summary": {"type": "STRING"},
        "regimes": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "color": {"type": "STRING"},
                    "regionCodes": {"type": "ARRAY", "items": {"type": "STRING"}},
                    "events": {
                        "type": "ARRAY",
                        "items": {"type": "STRING"},
                        "description": "1-2 historical events for this regime around this year",
                    },
                },
                "required": ["name", "color", "regionCodes", "events"],
            },
        },
    },
    "required": ["year", "summary", "regimes"],
}


class FetchError(RuntimeError):
    """Raised when a snapshot cannot be generated or parsed."""


def build_prompt(year: int) -> str:
    year_label = format_year(year)
    return f"""
请分析 {year_label} 年的欧洲政治地图。

任务：
1. 识别这一特定时期存在于欧洲的主要政治力量、帝国、王国或部落。
2. 根据其领土大致覆盖的现代国家，将这些政权映射到现代国家的 ISO Alpha-3 代码。
3. 为每个政权分配一个独特的、具有历史感的十六进制颜色。
4. 用**简体中文**提供一段关于该年份欧洲地缘政治局势的简短摘要（1句话）。
5. 政权名称 (name) 必须使用**简体中文**。
6. 为每个政权列出该年份或该时期发生的1-2个重大历史事件 (events)，事件描述要简练。

约束条件：
- 使用现代边界作为代理。如果一个帝国覆盖了现代国家的一部分，请包含该国家代码。
- "regionCodes" 必须是字符串 ISO Alpha-3 代码的数组（例如 "FRA", "DEU", "ITA"）。
- 覆盖所有主要的欧洲陆地。如果区域分散，可归类为 "独立/其他"。
""".strip()


def build_request_body(year: int) -> dict[str, Any]:
    return {
        "contents": [{"role": "user", "parts": [{"text": build_prompt(year)}]}],
        "generationConfig": {
            "responseMimeType": "application/json",
            "responseSchema": RESPONSE_SCHEMA,
        },
    }


def extract_json_text(raw: str) -> str:
    """Strip markdown fences some models wrap around JSON output."""
    match = _JSON_BLOCK_RE.search(raw)
    if match:
        return match.group(1).strip()
    return raw.strip()


def parse_snapshot_payload(text: str, *, year: int) -> Snapshot:
    try:
        data = json.loads(extract_json_text(text))
    except json.JSONDecodeError as exc:
        raise FetchError(f"Generator returned invalid JSON for {year}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise FetchError(f"Generator returned {type(data).__name__} instead of an object for {year}")
    if "regimes" not in data:
        raise FetchError(f"Generator response for {year} has no 'regimes'")
    try:
        return Snapshot.from_mapping(data, year=year)
    except ValueError as exc:
        raise FetchError(f"Generator response for {year} failed validation: {exc}") from exc


def _candidate_text(payload: Any) -> str:
    if not isinstance(payload, Mapping):
        raise FetchError("Generator response is not a JSON object")
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = payload.get("promptFeedback")
        raise FetchError(f"Generator returned no candidates (feedback={feedback!r})")
    first = candidates[0]
    content = first.get("content") if isinstance(first, Mapping) else None
    parts = content.get("parts") if isinstance(content, Mapping) else None
    if not isinstance(parts, list):
        raise FetchError("Generator candidate has no content parts")
    texts = [
        part["text"]
        for part in parts
        if isinstance(part, Mapping) and isinstance(part.get("text"), str)
    ]
    text = "".join(texts).strip()
    if not text:
        raise FetchError("No data returned")
    return text


class SnapshotFetcher:
    """Fetch one year's snapshot from the generative service.

    Every failure mode (transport, HTTP status, payload shape) is reported as
    `FetchError`; callers decide how to degrade.
    """

    def __init__(
        self,
        cfg: GeneratorConfig,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.cfg = cfg
        self._api_key = cfg.api_key if api_key is None else api_key.strip()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=cfg.api_base_url,
            timeout=cfg.request_timeout_s,
        )
        self._max_retries = max(int(cfg.max_retries), 0)
        self._retry_backoff_s = max(float(cfg.retry_backoff_s), 0.01)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, year: int) -> Snapshot:
        year = normalize_year(year)
        if not self._api_key:
            raise FetchError(f"API key not configured (set ${self.cfg.api_key_env})")
        response = await self._post_generate(build_request_body(year))
        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(f"Generator returned a non-JSON body for {year}") from exc
        snapshot = parse_snapshot_payload(_candidate_text(payload), year=year)
        _LOGGER.info(
            "Generated snapshot for %s with %d regimes",
            format_year(year),
            len(snapshot.regimes),
        )
        return snapshot

    async def _post_generate(self, body: Mapping[str, Any]) -> httpx.Response:
        url = f"{self.cfg.api_base_url}/models/{self.cfg.model}:generateContent"
        headers = {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            try:
                response = await self._client.post(url, json=body, headers=headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise FetchError(f"Generator request failed: {exc}") from exc
            if response.status_code not in _RETRYABLE_HTTP_STATUS:
                if response.is_error:
                    raise FetchError(
                        f"Generator returned HTTP {response.status_code}: {response.text[:200]}"
                    )
                return response
            if attempt >= self._max_retries:
                raise FetchError(
                    f"Generator returned HTTP {response.status_code} after {attempts} attempts"
                )
            delay_s = self._compute_retry_delay_s(response=response, attempt=attempt)
            _LOGGER.warning(
                "Retryable response %s from generator; retrying in %.1fs (%d/%d)",
                response.status_code,
                delay_s,
                attempt + 1,
                self._max_retries,
            )
            await asyncio.sleep(delay_s)
        raise FetchError("Unreachable retry loop in snapshot fetcher")

    def _compute_retry_delay_s(self, *, response: httpx.Response, attempt: int) -> float:
        retry_after_s = _parse_retry_after_seconds(response.headers.get("Retry-After"))
        exponential_s = self._retry_backoff_s * (2**attempt)
        chosen = max(exponential_s, retry_after_s)
        return min(chosen, 300.0)


def _parse_retry_after_seconds(raw: str | None) -> float:
    if raw is None:
        return 0.0
    value = raw.strip()
    if not value:
        return 0.0
    try:
        parsed = float(value)
    except ValueError:
        return 0.0
    return max(parsed, 0.0)
