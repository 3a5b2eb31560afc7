import asyncio
import json
from typing import Any, AsyncIterator, Iterable

import aiohttp
from aiohttp import (
    ClientConnectorError,
    ClientPayloadError,
    ClientResponseError,
    ContentTypeError,
    ServerDisconnectedError,
)

from wikimirror.config.logger_config import logger
from wikimirror.config.settings import SourceConfig
from wikimirror.mirror.domain.errors import MirrorError, PageNotFoundError, TransportError
from wikimirror.mirror.domain.models import Change, Listing, RenderedPage, SiteInfo, TimestampLookup
from wikimirror.mirror.domain.rules import parse_mw_timestamp
from wikimirror.mirror.infrastructure.api_log import ApiCallEvent, ApiCallLog, utc_now_iso

_RETRYABLE = (
    ClientResponseError,
    ClientConnectorError,
    ServerDisconnectedError,
    asyncio.TimeoutError,
    ClientPayloadError,
)


class MediaWikiClient:
    """Remote source client for the MediaWiki action API."""

    def __init__(
        self,
        source: SourceConfig,
        api_log: ApiCallLog | None = None,
    ) -> None:
        self.source = source
        self.api_log = api_log

    @property
    def headers(self) -> dict[str, str]:
        return {"User-Agent": self.source.user_agent}

    async def list_pages(
        self,
        session: aiohttp.ClientSession,
        namespace: int,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Listing[str]:
        params: dict[str, Any] = {
            "action": "query",
            "list": "allpages",
            "aplimit": str(limit),
            "apnamespace": str(namespace),
        }
        if cursor:
            params["apcontinue"] = cursor
        data = await self._query(session, params, operation="list_pages")
        titles = tuple(
            str(item["title"]) for item in data.get("query", {}).get("allpages", []) if item.get("title")
        )
        return Listing(items=titles, next_cursor=self._next_cursor(data, "apcontinue"))

    async def list_recent_changes(
        self,
        session: aiohttp.ClientSession,
        namespaces: Iterable[int],
        since: int,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Listing[Change]:
        params: dict[str, Any] = {
            "action": "query",
            "list": "recentchanges",
            "rcprop": "title|timestamp",
            "rclimit": str(limit),
            "rcnamespace": "|".join(str(ns) for ns in namespaces),
            "rcend": str(since),
        }
        if cursor:
            params["rccontinue"] = cursor
        data = await self._query(session, params, operation="list_recent_changes")
        changes: list[Change] = []
        for item in data.get("query", {}).get("recentchanges", []):
            title = str(item.get("title") or "").strip()
            if not title:
                continue
            timestamp = item.get("timestamp")
            changes.append(Change(title=title, timestamp=parse_mw_timestamp(timestamp) if timestamp else 0))
        return Listing(items=tuple(changes), next_cursor=self._next_cursor(data, "rccontinue"))

    async def list_category_members(
        self,
        session: aiohttp.ClientSession,
        title: str,
        cursor: str | None = None,
        limit: int = 500,
    ) -> Listing[str]:
        params: dict[str, Any] = {
            "action": "query",
            "list": "categorymembers",
            "cmtitle": title,
            "cmlimit": str(limit),
        }
        if cursor:
            params["cmcontinue"] = cursor
        data = await self._query(session, params, operation="list_category_members", title=title)
        titles = tuple(
            str(item["title"]) for item in data.get("query", {}).get("categorymembers", []) if item.get("title")
        )
        return Listing(items=titles, next_cursor=self._next_cursor(data, "cmcontinue"))

    async def list_images(
        self,
        session: aiohttp.ClientSession,
        cursor: str | None = None,
        limit: int = 50,
    ) -> Listing[str]:
        params: dict[str, Any] = {
            "action": "query",
            "list": "allimages",
            "ailimit": str(limit),
        }
        if cursor:
            params["aicontinue"] = cursor
        data = await self._query(session, params, operation="list_images")
        titles = tuple(
            str(item["title"]) for item in data.get("query", {}).get("allimages", []) if item.get("title")
        )
        return Listing(items=titles, next_cursor=self._next_cursor(data, "aicontinue"))

    async def render_page(self, session: aiohttp.ClientSession, title: str) -> RenderedPage:
        params = {
            "action": "parse",
            "page": title,
            "prop": "text|categories",
        }
        data = await self._fetch(session, params, operation="render_page", title=title)
        error = data.get("error")
        if error:
            if error.get("code") in ("missingtitle", "invalidtitle"):
                raise PageNotFoundError(title)
            raise TransportError(f"API error for '{title}': {error}", operation="render_page")

        parsed = data.get("parse")
        if not isinstance(parsed, dict) or not isinstance(parsed.get("text"), str):
            raise TransportError(f"Malformed parse payload for '{title}'", operation="render_page")

        categories = tuple(
            str(item["category"]).replace("_", " ")
            for item in parsed.get("categories") or []
            if item.get("category")
        )
        return RenderedPage(title=str(parsed.get("title") or title), html=parsed["text"], categories=categories)

    async def get_revision_timestamp(self, session: aiohttp.ClientSession, title: str) -> TimestampLookup:
        params = {
            "action": "query",
            "prop": "revisions",
            "titles": title,
            "rvprop": "timestamp",
        }
        try:
            data = await self._query(session, params, operation="get_revision_timestamp", title=title)
        except MirrorError as exc:
            return TimestampLookup.unknown(f"{type(exc).__name__}: {exc}")

        pages = data.get("query", {}).get("pages", [])
        revisions = pages[0].get("revisions", []) if pages else []
        timestamp = revisions[0].get("timestamp") if revisions else None
        if not timestamp:
            return TimestampLookup.unknown("no_revision")
        try:
            return TimestampLookup.resolved(parse_mw_timestamp(timestamp))
        except ValueError:
            return TimestampLookup.unknown(f"bad_timestamp: {timestamp}")

    async def get_image_url(self, session: aiohttp.ClientSession, title: str) -> str:
        params = {
            "action": "query",
            "titles": title,
            "prop": "imageinfo",
            "iiprop": "url",
        }
        data = await self._query(session, params, operation="get_image_url", title=title)
        pages = data.get("query", {}).get("pages", [])
        if pages and pages[0].get("missing") and not pages[0].get("imageinfo"):
            raise PageNotFoundError(title)
        imageinfo = pages[0].get("imageinfo", []) if pages else []
        url = imageinfo[0].get("url") if imageinfo else None
        if not url:
            raise TransportError(f"No image URL for '{title}'", operation="get_image_url")
        return str(url)

    async def fetch_siteinfo(self, session: aiohttp.ClientSession) -> SiteInfo:
        params = {
            "action": "query",
            "meta": "siteinfo",
            "siprop": "general|namespaces|namespacealiases|rightsinfo",
        }
        data = await self._query(session, params, operation="fetch_siteinfo")
        query = data.get("query", {})
        general = query.get("general", {})
        names: dict[str, str] = {}
        numbers: dict[str, int] = {}
        for value in query.get("namespaces", {}).values():
            ns_id = int(value["id"])
            name = str(value.get("name", ""))
            names[str(ns_id)] = name
            if name:
                numbers[name] = ns_id
            if value.get("canonical"):
                numbers[str(value["canonical"])] = ns_id
        for alias in query.get("namespacealiases", []):
            if alias.get("alias"):
                numbers[str(alias["alias"])] = int(alias["id"])
        rights = query.get("rightsinfo", {})
        return SiteInfo(
            main_page=str(general.get("mainpage") or "Main Page"),
            site_name=general.get("sitename"),
            namespace_names=names,
            namespace_numbers=numbers,
            rights_url=rights.get("url") or None,
            rights_text=rights.get("text") or None,
        )

    async def fetch_binary(
        self,
        session: aiohttp.ClientSession,
        url: str,
        chunk_size: int = 64 * 1024,
    ) -> AsyncIterator[bytes]:
        timeout = aiohttp.ClientTimeout(total=None, sock_read=60, connect=10)
        try:
            async with session.get(url, headers=self.headers, timeout=timeout) as resp:
                if resp.status != 200:
                    raise TransportError(f"HTTP {resp.status} for {url}", operation="fetch_binary", status=resp.status)
                async for chunk in resp.content.iter_chunked(chunk_size):
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(f"Download failed for {url}: {exc}", operation="fetch_binary") from exc

    async def _query(
        self,
        session: aiohttp.ClientSession,
        params: dict[str, Any],
        *,
        operation: str,
        title: str | None = None,
    ) -> dict[str, Any]:
        data = await self._fetch(session, params, operation=operation, title=title)
        if "error" in data:
            raise TransportError(f"API error during {operation}: {data['error']}", operation=operation)
        return data

    async def _fetch(
        self,
        session: aiohttp.ClientSession,
        params: dict[str, Any],
        *,
        operation: str,
        title: str | None = None,
    ) -> dict[str, Any]:
        params = {**params, "format": "json", "formatversion": "2"}
        retries = max(1, self.source.retries)
        timeout = aiohttp.ClientTimeout(total=45, connect=10)
        for attempt in range(1, retries + 1):
            event: dict[str, Any] = {
                "operation": operation,
                "title": title,
                "attempt": attempt,
                "url": self.source.api_url,
                "params": params,
                "started_at": utc_now_iso(),
            }
            try:
                async with session.get(
                    self.source.api_url,
                    params=params,
                    headers=self.headers,
                    timeout=timeout,
                ) as resp:
                    event["http"] = self._build_http_meta(resp)
                    if resp.status >= 500 or resp.status == 429:
                        logger.warning("Server error {}. Attempt {}/{}", resp.status, attempt, retries)
                        raise ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                            message="Server Error",
                        )

                    if resp.status != 200:
                        body = await resp.text()
                        await self._write_event(event, outcome="http_error", response_text=body)
                        logger.error("HTTP {} during {}: {}", resp.status, operation, body)
                        raise TransportError(f"HTTP {resp.status}", operation=operation, status=resp.status)

                    try:
                        data = await resp.json()
                    except (ContentTypeError, json.JSONDecodeError, ValueError) as exc:
                        body = await resp.text()
                        await self._write_event(event, outcome="retryable_error", response_text=body, error=exc)
                        if attempt == retries:
                            logger.error("Failed after {} attempts. Error: {}", retries, exc)
                            raise TransportError(
                                f"Malformed response during {operation}: {exc}", operation=operation
                            ) from exc
                        wait_time = 2**attempt
                        logger.warning("Malformed response ({}). Retrying in {}s...", exc, wait_time)
                        await asyncio.sleep(wait_time)
                        continue

                    if not isinstance(data, dict):
                        await self._write_event(event, outcome="fatal_error", response_json=data)
                        raise TransportError(f"Unexpected payload during {operation}", operation=operation)
                    await self._write_event(event, outcome="success", response_json=data)
                    return data

            except _RETRYABLE as exc:
                await self._write_event(event, outcome="retryable_error", error=exc)
                if attempt == retries:
                    logger.error("Failed after {} attempts. Error: {}", retries, exc)
                    raise TransportError(
                        f"{operation} failed after {retries} attempts: {exc}",
                        operation=operation,
                        status=getattr(exc, "status", None),
                    ) from exc
                wait_time = 2**attempt
                logger.warning("Connection unstable ({}). Retrying in {}s...", exc, wait_time)
                await asyncio.sleep(wait_time)
            except aiohttp.ClientError as exc:
                await self._write_event(event, outcome="fatal_error", error=exc)
                logger.error("{} failed during {}: {}", type(exc).__name__, operation, exc)
                raise TransportError(f"{operation} failed: {exc}", operation=operation) from exc

        raise TransportError(f"{operation} failed", operation=operation)

    @staticmethod
    def _next_cursor(data: dict[str, Any], key: str) -> str | None:
        cont = data.get("continue")
        if not isinstance(cont, dict):
            return None
        value = cont.get(key)
        return str(value) if value else None

    @staticmethod
    def _build_http_meta(resp: aiohttp.ClientResponse) -> dict[str, Any]:
        return {
            "status": resp.status,
            "etag": resp.headers.get("ETag", ""),
            "last_modified": resp.headers.get("Last-Modified", ""),
        }

    async def _write_event(
        self,
        event: dict[str, Any],
        *,
        outcome: str,
        response_json: Any = None,
        response_text: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        if self.api_log is None:
            return
        record = ApiCallEvent.attempt_of(
            **event,
            outcome=outcome,
            response_json=response_json,
            response_text=response_text,
            error=error,
        )
        try:
            await self.api_log.record(record)
        except (OSError, RuntimeError) as exc:
            logger.warning("Failed to persist API call event: {}", exc)
