"""HTTP embedding backend client with backpressure.

The client enforces a minimum delay between consecutive calls and a hard
ceiling on in-flight calls. It never retries: retry policy belongs to the
batch scheduler.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Mapping,
    Protocol,
    Sequence,
    runtime_checkable,
)

import httpx

from notevec.core.config import BACKEND_CONCURRENCY_CEILING, BackendSettings
from notevec.core.logging import Logger, get_logger
from notevec.modules.embeddings.errors import (
    BackendDimensionMismatch,
    BackendError,
    BackendOverloaded,
    BackendRequestError,
    BackendTimeout,
    BackendUnavailable,
)
from notevec.modules.embeddings.models import EmbeddingVector

__all__ = [
    "BackendHealth",
    "EmbeddingBackend",
    "HttpEmbeddingBackend",
    "RateLimiter",
    "clamp_concurrency",
]

_EMBED_PATH = "/api/embed"
_TAGS_PATH = "/api/tags"
_HEALTH_TIMEOUT = 5.0


@runtime_checkable
class EmbeddingBackend(Protocol):
    """Boundary contract for embedding backends."""

    @property
    def max_concurrency(self) -> int:
        """Maximum number of calls the backend accepts in flight."""

    def embed(self, text: str) -> EmbeddingVector:
        """Embed a single text."""

    def embed_batch(self, texts: Sequence[str]) -> tuple[EmbeddingVector, ...]:
        """Embed ``texts`` returning vectors in input order."""

    def close(self) -> None:
        """Release transport resources."""


def clamp_concurrency(
    requested: int,
    *,
    ceiling: int = BACKEND_CONCURRENCY_CEILING,
    logger: Logger | None = None,
    source: str = "config",
) -> int:
    """Clamp ``requested`` into ``[1, ceiling]`` logging any reduction.

    Example:
        >>> clamp_concurrency(9, ceiling=4)
        4
    """

    value = max(1, int(requested))
    if value > ceiling:
        if logger is not None:
            logger.warning(
                "embed-concurrency-clamped",
                requested=requested,
                ceiling=ceiling,
                source=source,
            )
        return ceiling
    return value


class RateLimiter:
    """Spaces consecutive calls at least ``min_interval`` seconds apart.

    Slots are reserved under a lock and the wait happens outside it, so
    concurrent callers queue in reservation order without holding the lock
    while sleeping.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._sleep = sleep
        self._now = now
        self._lock = threading.Lock()
        self._next_slot: float | None = None

    def acquire(self) -> float:
        """Block until the next call may start; return the time waited."""

        with self._lock:
            current = self._now()
            slot = current if self._next_slot is None else max(
                current, self._next_slot
            )
            self._next_slot = slot + self.min_interval
        wait = slot - current
        if wait > 0:
            self._sleep(wait)
        return wait


@dataclass(frozen=True, slots=True)
class BackendHealth:
    """Reachability and model availability of the backend."""

    reachable: bool
    model_available: bool
    model: str
    models: tuple[str, ...] = ()
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.reachable and self.model_available


class HttpEmbeddingBackend:
    """Embed texts via an Ollama-style ``/api/embed`` endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        task_prefix: str = "",
        timeout: float = 60.0,
        min_interval: float = 0.2,
        max_concurrency: int = 2,
        dimensions: int = 0,
        truncate: bool = True,
        logger: Logger | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.monotonic,
    ) -> None:
        self.logger = logger or get_logger(__name__, component="backend")
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.task_prefix = task_prefix
        self.timeout = timeout
        self.truncate = truncate
        self._max_concurrency = clamp_concurrency(
            max_concurrency,
            logger=self.logger,
            source="backend.max_concurrency",
        )
        self._slots = threading.BoundedSemaphore(self._max_concurrency)
        self._limiter = RateLimiter(min_interval, sleep=sleep, now=now)
        self._now = now
        self._dimensions = dimensions or None
        self._dim_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = {"requests": 0, "texts": 0, "failures": 0}
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: BackendSettings,
        *,
        logger: Logger | None = None,
        client: httpx.Client | None = None,
    ) -> "HttpEmbeddingBackend":
        """Build a backend from the ``[backend]`` config section."""

        return cls(
            base_url=settings.base_url,
            model=settings.model,
            task_prefix=settings.task_prefix,
            timeout=settings.timeout,
            min_interval=settings.min_interval,
            max_concurrency=settings.max_concurrency,
            dimensions=settings.dimensions,
            truncate=settings.truncate,
            logger=logger,
            client=client,
        )

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    @property
    def stats(self) -> Mapping[str, int]:
        """Return counters captured during the backend lifetime."""

        with self._stats_lock:
            return dict(self._stats)

    def embed(self, text: str) -> EmbeddingVector:
        return self.embed_batch((text,))[0]

    def embed_batch(self, texts: Sequence[str]) -> tuple[EmbeddingVector, ...]:
        if not texts:
            return ()

        payload = {
            "model": self.model,
            "input": [self._prefix(text) for text in texts],
            "truncate": self.truncate,
        }
        with self._slots:
            waited = self._limiter.acquire()
            start = self._now()
            try:
                response = self._client.post(
                    _EMBED_PATH,
                    json=payload,
                    timeout=self.timeout,
                )
            except httpx.HTTPError as exc:
                self._count("failures")
                raise self._translate_exception(exc) from exc
            elapsed = self._now() - start

        self._count("requests")
        try:
            vectors = self._parse_response(response, expected=len(texts))
        except BackendError:
            self._count("failures")
            raise
        self._count("texts", len(vectors))
        self.logger.debug(
            "embed-backend-request",
            model=self.model,
            batch_size=len(texts),
            latency=elapsed,
            rate_limit_wait=waited,
        )
        return vectors

    def check_health(self) -> BackendHealth:
        """Probe ``/api/tags`` for reachability and model presence."""

        try:
            response = self._client.get(_TAGS_PATH, timeout=_HEALTH_TIMEOUT)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning(
                "embed-backend-unhealthy",
                base_url=self.base_url,
                error=str(exc),
            )
            return BackendHealth(
                reachable=False,
                model_available=False,
                model=self.model,
                detail=str(exc) or exc.__class__.__name__,
            )

        names = tuple(
            str(entry.get("name", ""))
            for entry in data.get("models", ())
            if isinstance(entry, Mapping)
        )
        available = any(self.model in name for name in names)
        detail = None if available else f"model {self.model!r} not found"
        return BackendHealth(
            reachable=True,
            model_available=available,
            model=self.model,
            models=names,
            detail=detail,
        )

    def close(self) -> None:
        self.logger.debug("embed-backend-closed", **self.stats)
        if self._owns_client:
            self._client.close()

    def _prefix(self, text: str) -> str:
        if not self.task_prefix:
            return text
        return f"{self.task_prefix}: {text}"

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def _parse_response(
        self,
        response: httpx.Response,
        *,
        expected: int,
    ) -> tuple[EmbeddingVector, ...]:
        status = response.status_code
        if status == 429 or status >= 500:
            raise BackendOverloaded(
                f"Backend returned HTTP {status}: {_excerpt(response)}",
                model=self.model,
                status_code=status,
            )
        if status >= 400:
            raise BackendRequestError(
                f"Backend rejected request with HTTP {status}: "
                f"{_excerpt(response)}",
                model=self.model,
                status_code=status,
            )

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise BackendRequestError(
                "Backend returned a non-JSON response.",
                model=self.model,
                status_code=status,
            ) from exc

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list):
            raise BackendRequestError(
                "Backend response is missing 'embeddings'.",
                model=self.model,
                status_code=status,
            )
        if len(embeddings) != expected:
            raise BackendRequestError(
                f"Expected {expected} embeddings, got {len(embeddings)}.",
                model=self.model,
                status_code=status,
            )

        vectors = tuple(
            tuple(float(value) for value in vector) for vector in embeddings
        )
        for vector in vectors:
            self._check_dimension(len(vector))
        return vectors

    def _check_dimension(self, actual: int) -> None:
        with self._dim_lock:
            if self._dimensions is None:
                self._dimensions = actual
                self.logger.info(
                    "embed-backend-dimension-observed",
                    model=self.model,
                    dim=actual,
                )
                return
            expected = self._dimensions
        if actual != expected:
            raise BackendDimensionMismatch(
                f"Expected {expected}-dimensional vectors, got {actual}.",
                model=self.model,
                expected=expected,
                actual=actual,
            )

    def _translate_exception(self, exc: httpx.HTTPError) -> BackendError:
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, httpx.TimeoutException):
            return BackendTimeout(
                f"Backend call exceeded {self.timeout}s: {message}",
                model=self.model,
                timeout=self.timeout,
            )
        if isinstance(exc, httpx.TransportError):
            return BackendUnavailable(
                f"Backend unreachable at {self.base_url}: {message}",
                model=self.model,
            )
        return BackendRequestError(message, model=self.model)


def _excerpt(response: httpx.Response, limit: int = 200) -> str:
    text = response.text.strip()
    if len(text) > limit:
        return f"{text[:limit]}..."
    return text
