"""Client for the CivitAI public REST API with rate limiting and caching."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, cast

import requests  # type: ignore[import]

from provenance.clients.base_client import BaseClient
from provenance.errors import NetworkError, ParseError
from provenance.models import CivitaiRecord, CivitaiVersion
from provenance.net.rate_limiter import RateLimiter

DEFAULT_BASE_URL = "https://civitai.com/api/v1"
DEFAULT_MIN_INTERVAL_SECONDS = 1.0
DEFAULT_TIMEOUT_SECONDS = 30
HASH_SEARCH_LIMIT = 10
NAME_SEARCH_LIMIT = 20
RELATED_SEARCH_LIMIT = 50


class _SessionWithGet(Protocol):
    def get(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> Any: ...


class CivitaiClient(BaseClient[CivitaiRecord]):
    """Query CivitAI models by hash, name and id."""

    provider = "civitai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
        session: Optional[_SessionWithGet] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        limiter = rate_limiter or RateLimiter(DEFAULT_MIN_INTERVAL_SECONDS)
        super().__init__(limiter, logger=logger)
        self._session = cast(_SessionWithGet, session or requests.Session())
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._api_key = (api_key or "").strip() or None

    def set_api_key(self, api_key: Optional[str]) -> None:
        self._api_key = (api_key or "").strip() or None

    # Searches -------------------------------------------------------------

    def search_by_hash(self, value: str) -> List[CivitaiRecord]:
        """Return models owning a file with the given hash."""
        try:
            payload = self._get(
                "/models", {"hash": value, "limit": HASH_SEARCH_LIMIT}
            )
            return self._parse_items(payload)
        except (NetworkError, ParseError) as exc:
            self._logger.warning(
                "CivitAI hash search failed for %s: %s", value, exc
            )
            return []

    def search_by_query(self, query: str) -> List[CivitaiRecord]:
        payload = self._get(
            "/models", {"query": query, "limit": NAME_SEARCH_LIMIT}
        )
        return self._parse_items(payload)

    def find_related_models(
        self, base_model: str, model_type: str
    ) -> List[CivitaiRecord]:
        """List top-rated models of ``model_type`` built on ``base_model``."""
        try:
            payload = self._get(
                "/models",
                {
                    "types": model_type,
                    "baseModels": base_model,
                    "sort": "Highest Rated",
                    "limit": RELATED_SEARCH_LIMIT,
                },
            )
            return self._parse_items(payload)
        except (NetworkError, ParseError) as exc:
            self._logger.warning(
                "Related model lookup failed for %s/%s: %s",
                base_model,
                model_type,
                exc,
            )
            return []

    # Direct lookups -------------------------------------------------------

    def get_by_id(self, record_id: Any) -> CivitaiRecord:
        payload = self._get(f"/models/{int(record_id)}")
        if not isinstance(payload, Mapping):
            raise ParseError(f"Unexpected CivitAI model payload: {payload!r}")
        return CivitaiRecord.from_payload(payload)

    def get_version_by_id(self, version_id: Any) -> CivitaiVersion:
        payload = self._get(f"/model-versions/{int(version_id)}")
        if not isinstance(payload, Mapping):
            raise ParseError(
                f"Unexpected CivitAI version payload: {payload!r}"
            )
        return CivitaiVersion.from_payload(payload)

    # Internals ------------------------------------------------------------

    def _record_id(self, record: CivitaiRecord) -> Any:
        return record.id

    def _get(
        self, endpoint: str, params: Optional[Mapping[str, Any]] = None
    ) -> Any:
        url = f"{self._base_url}{endpoint}"

        def _operation() -> Any:
            self._logger.debug("GET %s params=%s", url, params)
            try:
                response = self._session.get(
                    url,
                    params=dict(params or {}),
                    headers=self._build_headers(),
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                raise NetworkError(
                    f"CivitAI request to {endpoint} failed: {exc}"
                ) from exc

            if not 200 <= response.status_code < 300:
                raise NetworkError(
                    f"CivitAI API error {response.status_code} for {endpoint}",
                    status_code=response.status_code,
                )
            try:
                return response.json()
            except ValueError as exc:
                raise ParseError(
                    f"CivitAI returned malformed JSON for {endpoint}"
                ) from exc

        return self._execute_cached(endpoint, params, _operation)

    @staticmethod
    def _parse_items(payload: Any) -> List[CivitaiRecord]:
        if not isinstance(payload, Mapping) or not isinstance(
            payload.get("items"), list
        ):
            raise ParseError("CivitAI response is missing an 'items' list")
        return [
            CivitaiRecord.from_payload(item)
            for item in payload["items"]
            if isinstance(item, Mapping)
        ]

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers
