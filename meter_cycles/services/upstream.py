"""Shared blocking HTTP plumbing for the unit directory, meter registry and invoice service.

Calls are never retried here; a timeout or transport failure surfaces as
UpstreamUnavailableError so callers can tell "service down" from "not complete".
"""

import logging
from typing import Any, Callable, TypeVar

import httpx

from meter_cycles.config import settings
from meter_cycles.services.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UpstreamResponseError(Exception):
    """Upstream answered with an HTTP error status."""

    def __init__(self, message: str, status_code: int, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class UpstreamClient:
    """Base class for JSON-over-HTTP upstream clients."""

    service_name = "upstream"

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else settings.upstream_timeout_seconds
        self._client = client

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make a request and decode the JSON body."""
        client = self._get_client()
        try:
            response = client.request(method=method, url=path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error("%s timed out: %s %s", self.service_name, method, path)
            raise UpstreamUnavailableError(self.service_name, f"timeout calling {path}") from e
        except httpx.TransportError as e:
            logger.error("%s request failed: %s %s: %s", self.service_name, method, path, e)
            raise UpstreamUnavailableError(self.service_name, f"request to {path} failed") from e

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            logger.error(
                "%s returned %d for %s %s", self.service_name, response.status_code, method, path
            )
            raise UpstreamResponseError(
                f"{self.service_name} error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(
                self.service_name, f"invalid JSON from {path}"
            ) from e

    def _get_items(self, path: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """GET a listing and return every item, following page links to the last page.

        Raises:
            UpstreamResponseError: If any page answers with an HTTP error status
            UpstreamUnavailableError: If a page is missing items or the listing is malformed
        """
        params = dict(params or {})
        result = self._request("GET", path, params=params or None)
        items = self._page_items(result, path)
        page = 0
        while self._has_next_page(result, page, path):
            page += 1
            result = self._request("GET", path, params={**params, "page": page})
            batch = self._page_items(result, path)
            if not batch:
                logger.error("%s returned an empty page %d for %s", self.service_name, page, path)
                raise UpstreamUnavailableError(
                    self.service_name, f"page {page} of {path} came back empty"
                )
            items.extend(batch)
        if page:
            logger.debug("Fetched %d items from %s across %d pages", len(items), path, page + 1)
        return items

    def _decode(self, what: str, decoder: Callable[[Any], T], items: list[Any]) -> list[T]:
        """Build typed records from upstream items; a malformed item fails the whole call."""
        try:
            return [decoder(item) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            logger.error("%s sent a malformed %s: %r", self.service_name, what, e)
            raise UpstreamUnavailableError(self.service_name, f"malformed {what}: {e!r}") from e

    def _page_items(self, result: Any, path: str) -> list[dict[str, Any]]:
        """Return the items of a plain list or of one page of a paged response."""
        if isinstance(result, list):
            return list(result)
        if isinstance(result, dict):
            for key in ("items", "content"):
                if isinstance(result.get(key), list):
                    return list(result[key])
            if not result:
                return []
        logger.error("%s sent an unexpected listing format from %s", self.service_name, path)
        raise UpstreamUnavailableError(self.service_name, f"unexpected listing format from {path}")

    def _has_next_page(self, result: Any, page: int, path: str) -> bool:
        """Paged responses carry either ``last`` or ``totalPages``; plain lists have one page."""
        if not isinstance(result, dict):
            return False
        if "last" in result:
            return not result["last"]
        total_pages = result.get("totalPages")
        if total_pages is None:
            return False
        try:
            return page + 1 < int(total_pages)
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailableError(
                self.service_name, f"bad totalPages {total_pages!r} from {path}"
            ) from e


__all__ = ["UpstreamClient", "UpstreamResponseError"]
