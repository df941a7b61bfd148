"""Hugging Face Hub client that wraps HfApi with rate limiting and caching."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from huggingface_hub import HfApi
from huggingface_hub.errors import HfHubHTTPError

from provenance.clients.base_client import BaseClient, request_signature
from provenance.errors import NetworkError
from provenance.models import HuggingFaceRecord
from provenance.net.rate_limiter import RateLimiter

DEFAULT_MIN_INTERVAL_SECONDS = 1.0
NAME_SEARCH_LIMIT = 10
HASH_ENDPOINT = "hash"


def _status_code(error: HfHubHTTPError) -> Optional[int]:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


class HFClient(BaseClient[HuggingFaceRecord]):
    """Thin wrapper around ``huggingface_hub.HfApi`` for model lookups."""

    provider = "huggingface"

    def __init__(
        self,
        *,
        api: Optional[Any] = None,
        token: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        limiter = rate_limiter or RateLimiter(DEFAULT_MIN_INTERVAL_SECONDS)
        super().__init__(limiter, logger=logger)
        self._token = (token or "").strip() or None
        self._api = api if api is not None else HfApi(token=self._token)

    def has_token(self) -> bool:
        return self._token is not None

    # Searches -------------------------------------------------------------

    def search_by_hash(self, value: str) -> List[HuggingFaceRecord]:
        """Return cached hash matches; the Hub offers no hash index.

        Only the response cache is consulted, so a miss returns an empty
        list without contacting the Hub.
        """
        hit, cached = self._cached_lookup(
            request_signature(HASH_ENDPOINT, {"hash": value})
        )
        if not hit:
            self._logger.debug(
                "No Hub hash index; skipping lookup for %s", value
            )
            return []
        return [HuggingFaceRecord.from_model_info(item) for item in cached]

    def search_by_query(self, query: str) -> List[HuggingFaceRecord]:
        params = {"search": query, "limit": NAME_SEARCH_LIMIT, "full": True}

        def _operation() -> List[Any]:
            self._logger.debug("Searching Hub models for %r", query)
            return self._call_with_auth_fallback(
                lambda token: list(
                    self._api.list_models(
                        search=query,
                        limit=NAME_SEARCH_LIMIT,
                        full=True,
                        token=token,
                    )
                ),
                label=f"search({query})",
            )

        items = self._execute_cached("/api/models", params, _operation)
        return [HuggingFaceRecord.from_model_info(item) for item in items]

    # Direct lookups -------------------------------------------------------

    def get_by_id(self, record_id: Any) -> HuggingFaceRecord:
        repo_id = self._normalize_repo_id(str(record_id))
        return HuggingFaceRecord.from_model_info(
            self._model_info(repo_id, revision=None)
        )

    def get_version_by_id(self, version_id: Any) -> HuggingFaceRecord:
        """Fetch a repo at a revision given as ``"org/name@revision"``."""
        repo_part, _, revision = str(version_id).partition("@")
        repo_id = self._normalize_repo_id(repo_part)
        return HuggingFaceRecord.from_model_info(
            self._model_info(repo_id, revision=revision or "main")
        )

    def list_model_files(self, repo_id: str) -> List[Tuple[str, int]]:
        """Return ``(path, size_bytes)`` for files in the model repo.

        ``list_repo_tree`` is preferred because it reports sizes; the
        ``siblings`` of ``model_info`` are the fallback, with size ``0``
        when the Hub omits it.
        """
        normalized_repo = self._normalize_repo_id(repo_id)

        def _list_via_tree() -> List[Tuple[str, int]]:
            items = self._api.list_repo_tree(
                normalized_repo, repo_type="model", recursive=True
            )
            results: List[Tuple[str, int]] = []
            for item in items:
                path = getattr(item, "path", None) or getattr(
                    item, "rfilename", None
                )
                size = getattr(item, "size", None)
                if isinstance(path, str) and isinstance(size, int):
                    results.append((path, size))
            return results

        def _operation() -> List[Tuple[str, int]]:
            try:
                files = _list_via_tree()
            except HfHubHTTPError as exc:
                self._logger.debug(
                    "list_repo_tree failed for %s: %s", normalized_repo, exc
                )
                files = []
            if files:
                return files
            info = self._api.model_info(normalized_repo, files_metadata=False)
            return [
                (sibling.rfilename, getattr(sibling, "size", None) or 0)
                for sibling in getattr(info, "siblings", None) or []
                if isinstance(getattr(sibling, "rfilename", None), str)
            ]

        def _guarded() -> List[Tuple[str, int]]:
            try:
                return _operation()
            except HfHubHTTPError as exc:
                raise NetworkError(
                    f"Hub file listing failed for {normalized_repo}: {exc}",
                    status_code=_status_code(exc),
                ) from exc
            except requests.RequestException as exc:
                raise NetworkError(
                    f"Hub file listing failed for {normalized_repo}: {exc}"
                ) from exc

        return self._execute_cached(
            f"/api/models/{normalized_repo}/tree/main", None, _guarded
        )

    # Internals ------------------------------------------------------------

    def _record_id(self, record: HuggingFaceRecord) -> Any:
        return record.id

    def _model_info(self, repo_id: str, *, revision: Optional[str]) -> Any:
        def _operation() -> Any:
            self._logger.debug(
                "Requesting model info for %s@%s", repo_id, revision or "main"
            )
            return self._call_with_auth_fallback(
                lambda token: self._api.model_info(
                    repo_id, revision=revision, token=token
                ),
                label=f"model_info({repo_id})",
            )

        return self._execute_cached(
            f"/api/models/{repo_id}", {"revision": revision}, _operation
        )

    def _call_with_auth_fallback(
        self, call: Callable[[Optional[Any]], Any], *, label: str
    ) -> Any:
        """Invoke ``call``; retry anonymously once when a token gets 401."""
        token: Optional[Any] = self._token
        try:
            try:
                return call(token)
            except HfHubHTTPError as exc:
                if _status_code(exc) != 401 or token is None:
                    raise
                self._logger.warning(
                    "Hub rejected token for %s; retrying anonymously", label
                )
                return call(False)
        except HfHubHTTPError as exc:
            raise NetworkError(
                f"Hub request {label} failed: {exc}",
                status_code=_status_code(exc),
            ) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Hub request {label} failed: {exc}") from exc

    @staticmethod
    def _normalize_repo_id(repo_identifier: str) -> str:
        trimmed = repo_identifier.strip()
        if not trimmed:
            raise ValueError("Repository identifier cannot be empty.")

        if "://" not in trimmed:
            return trimmed

        parsed = urlparse(trimmed)
        if parsed.netloc != "huggingface.co":
            raise ValueError(
                f"Unsupported Hugging Face host: {parsed.netloc}"
            )

        segments = [segment for segment in parsed.path.split("/") if segment]
        if segments and segments[0] == "models":
            segments = segments[1:]

        if len(segments) < 2:
            raise ValueError(f"Unable to extract repo id from URL: {trimmed}")

        return "/".join(segments[:2])
