"""Offset-paginated client for the upstream post source.

Classes:
    SourceAuthor, SourceCommunity, SourcePost: Validated shapes of upstream records.
    SourceError, SourceTransientError: Page request failures (permanent and retryable).
    PostSource: Fetches every available post up to a requested total under the source's offset ceiling.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from atlas.core.config import Settings, get_settings

_LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class SourceAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    name: Optional[str] = None


class SourceCommunity(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None
    name: Optional[str] = None
    display_name: Optional[str] = None


class SourcePost(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    content: str = ""
    title: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[datetime] = None
    author: Optional[SourceAuthor] = None
    submolt: Optional[SourceCommunity] = None

    def embedding_text(self) -> str:
        return f"{self.title}\n{self.content}" if self.title else self.content

    def label_text(self) -> str:
        return f"{self.title}: {self.content}" if self.title else self.content


class SourceError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceTransientError(SourceError):
    """Server-side or soft failure worth retrying."""


class PostSource:
    """Read-only view of one upstream endpoint and its paging limits.

    Pagination stops quietly, keeping whatever was collected, when the total
    is reached, the offset ceiling is passed, a page is empty or holds only
    already-seen ids, or a page request fails after retries.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
        page_size: int | None = None,
        max_offset: int | None = None,
        request_delay: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = base_url
        self._api_key = api_key
        self._client = client
        self._timeout = settings.source_timeout
        self.page_size = page_size if page_size is not None else settings.source_page_size
        self.max_offset = max_offset if max_offset is not None else settings.source_max_offset
        self.request_delay = request_delay if request_delay is not None else settings.source_request_delay
        self.max_retries = max(1, max_retries if max_retries is not None else settings.source_max_retries)
        self.retry_delay = retry_delay if retry_delay is not None else settings.source_retry_delay
        self._sleep: Sleep = sleep or asyncio.sleep

    @property
    def headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    async def fetch_all(self, total_limit: int) -> list[SourcePost]:
        if self._client is not None:
            return await self._paginate(self._client, total_limit)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._paginate(client, total_limit)

    async def _paginate(self, client: httpx.AsyncClient, total_limit: int) -> list[SourcePost]:
        effective_limit = min(total_limit, self.max_offset + self.page_size)
        if total_limit > effective_limit:
            _LOGGER.warning(
                "Requested %d posts but offset pagination only reaches %d (offset ceiling %d)",
                total_limit,
                effective_limit,
                self.max_offset,
            )

        collected: list[SourcePost] = []
        seen_ids: set[str] = set()
        offset = 0

        while len(collected) < effective_limit and offset <= self.max_offset:
            limit = min(self.page_size, effective_limit - len(collected))
            try:
                payload = await self._fetch_page(client, offset=offset, limit=limit)
            except (SourceError, httpx.HTTPError, ValueError) as exc:
                _LOGGER.warning(
                    "Stopping pagination at offset %d with %d posts collected: %s",
                    offset,
                    len(collected),
                    exc,
                )
                break

            records = _extract_records(payload)
            if not records:
                _LOGGER.info("No posts returned at offset %d, stopping pagination", offset)
                break

            fresh: list[SourcePost] = []
            for record in _parse_records(records):
                if record.id in seen_ids:
                    continue
                seen_ids.add(record.id)
                fresh.append(record)

            if not fresh:
                _LOGGER.info("Page at offset %d held only duplicates, stopping pagination", offset)
                break

            collected.extend(fresh)
            offset += len(records)
            _LOGGER.info("Fetched %d/%d posts (next offset %d)", len(collected), effective_limit, offset)

            await self._sleep(self.request_delay)

        # a page may overshoot the remaining budget when the source ignores `limit`
        return collected[:effective_limit]

    async def _fetch_page(self, client: httpx.AsyncClient, *, offset: int, limit: int) -> dict[str, Any]:
        params = {"sort": "new", "limit": limit, "offset": offset}
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception_type((SourceTransientError, httpx.TransportError)),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                response = await client.get(self.base_url, params=params, headers=self.headers)
                return _read_page(response)
        raise SourceError("Page request exhausted retries")  # pragma: no cover - reraise=True


def _read_page(response: httpx.Response) -> dict[str, Any]:
    if response.status_code >= 500:
        raise SourceTransientError(
            f"Source returned {response.status_code}", status_code=response.status_code
        )
    if not response.is_success:
        raise SourceError(
            f"Source returned {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )
    try:
        data = response.json()
    except json.JSONDecodeError as exc:
        raise SourceTransientError(
            f"Source returned an unreadable body: {exc}", status_code=response.status_code
        ) from exc
    if not isinstance(data, dict):
        raise SourceError("Source returned a non-object body", status_code=response.status_code)
    if data.get("success") is False:
        raise SourceTransientError(
            str(data.get("error") or "Source returned success: false"),
            status_code=response.status_code,
        )
    return data


def _extract_records(payload: dict[str, Any]) -> list[Any]:
    records = payload.get("posts") or payload.get("data") or []
    return records if isinstance(records, list) else []


def _parse_records(records: list[Any]) -> list[SourcePost]:
    parsed: list[SourcePost] = []
    for record in records:
        try:
            parsed.append(SourcePost.model_validate(record))
        except ValidationError:
            _LOGGER.warning("Skipping malformed source record: %r", record)
    return parsed


def _log_retry(retry_state) -> None:
    _LOGGER.warning(
        "Source request failed (attempt %d), retrying in %.1fs: %s",
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        retry_state.outcome.exception() if retry_state.outcome else None,
    )
