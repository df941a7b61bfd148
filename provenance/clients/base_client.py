"""Base class for rate-limited, cached registry clients."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import (Any, Callable, Dict, Generic, List, Mapping, Optional,
                    Tuple, TypeVar)

from provenance.errors import NetworkError, ParseError
from provenance.naming import generate_search_variations
from provenance.net.rate_limiter import RateLimiter

T = TypeVar("T")

Signature = Tuple[str, Tuple[Tuple[str, str], ...]]


def request_signature(
    endpoint: str, params: Optional[Mapping[str, Any]] = None
) -> Signature:
    """Normalize an endpoint and its parameters into a cache key."""
    normalized = tuple(
        sorted(
            (str(key), str(value))
            for key, value in (params or {}).items()
            if value is not None
        )
    )
    return endpoint, normalized


class BaseClient(ABC, Generic[T]):
    """Provide rate-limited, cached execution of outbound requests.

    Subclasses implement the registry specific request methods and the
    ``_record_id`` hook used to merge name-search results.
    """

    provider: str = "unknown"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._logger = logger or logging.getLogger(self.__class__.__name__)
        self._cache: Dict[Signature, Any] = {}
        self._cache_lock = threading.Lock()

    # Capability set -------------------------------------------------------

    @abstractmethod
    def search_by_hash(self, value: str) -> List[T]:
        """Return registry records whose files match the content hash."""

    @abstractmethod
    def search_by_query(self, query: str) -> List[T]:
        """Run a single free-text search against the registry."""

    @abstractmethod
    def get_by_id(self, record_id: Any) -> T:
        """Fetch one record; raises :class:`NetworkError` when missing."""

    @abstractmethod
    def get_version_by_id(self, version_id: Any) -> Any:
        """Fetch one version; raises :class:`NetworkError` when missing."""

    @abstractmethod
    def _record_id(self, record: T) -> Any:
        """Return the registry-unique id used to merge search results."""

    def search_by_name(self, filename: str) -> List[T]:
        """Search every name variation of ``filename`` and merge results.

        A failing variation is logged and skipped. Records are merged by
        registry id, keeping the order in which they were first seen.
        """
        variations = generate_search_variations(filename)
        merged: Dict[Any, T] = {}
        for variation in variations:
            try:
                records = self.search_by_query(variation)
            except (NetworkError, ParseError) as exc:
                self._logger.warning(
                    "%s search failed for variation %r: %s",
                    self.provider,
                    variation,
                    exc,
                )
                continue
            for record in records:
                merged.setdefault(self._record_id(record), record)

        self._logger.debug(
            "%s name search for %s: %d variations, %d unique results",
            self.provider,
            filename,
            len(variations),
            len(merged),
        )
        return list(merged.values())

    # Cache ----------------------------------------------------------------

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def seed_cache(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        value: Any,
    ) -> None:
        """Pre-populate the response cache for a request signature."""
        with self._cache_lock:
            self._cache[request_signature(endpoint, params)] = value

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def _cached_lookup(self, signature: Signature) -> Tuple[bool, Any]:
        with self._cache_lock:
            if signature in self._cache:
                return True, self._cache[signature]
        return False, None

    def _execute_cached(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        operation: Callable[[], Any],
    ) -> Any:
        """Return a cached response or run ``operation`` under the gate."""
        signature = request_signature(endpoint, params)
        hit, value = self._cached_lookup(signature)
        if hit:
            self._logger.debug("Cache hit for %s %s", endpoint, signature[1])
            return value

        label = f"{self.provider}:{endpoint}"
        value = self._execute_with_rate_limit(operation, name=label)
        with self._cache_lock:
            self._cache[signature] = value
        return value

    def _execute_with_rate_limit(
        self,
        operation: Callable[[], Any],
        *,
        name: Optional[str] = None,
    ) -> Any:
        """Run ``operation`` after waiting for rate-limiter availability."""
        label = name or getattr(operation, "__name__", "<anonymous>")
        self._rate_limiter.acquire()

        started_at = time.perf_counter()
        try:
            return operation()
        finally:
            self._rate_limiter.release()
            elapsed_ms = (time.perf_counter() - started_at) * 1000.0
            if self._logger.isEnabledFor(logging.DEBUG):
                self._logger.debug(
                    "Operation %s completed in %.2f ms",
                    label,
                    elapsed_ms,
                )

