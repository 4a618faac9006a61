# session.py
# Exclusive handle for one shared external resource (an HTTP session, a
# browser page, ...). Owned by exactly one handler instance.
#
# Guarantees: at most one in-flight operation against the resource at a time.
# reset() and release() are idempotent. The dispatcher never serializes calls
# itself; handlers backed by a shared resource serialize through this class.

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Generic, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExclusiveSession(Generic[T]):
    """
    Lazily-created resource guarded by a re-entrant lock.

    Example:
        session = ExclusiveSession("http", httpx.Client, lambda c: c.close())
        with session.use() as client:
            client.get("https://example.com")
    """

    def __init__(
        self,
        name: str,
        factory: Callable[[], T],
        closer: Callable[[T], None] | None = None,
    ) -> None:
        self._name = name
        self._factory = factory
        self._closer = closer
        self._lock = threading.RLock()
        self._resource: T | None = None
        self._generation = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def acquire(self) -> T:
        """Return the live resource, creating it on first use."""
        with self._lock:
            if self._resource is None:
                self._resource = self._factory()
                self._generation += 1
                logger.info("Session %r acquired (generation %d)", self._name, self._generation)
            return self._resource

    def release(self) -> None:
        """Close and drop the resource. Safe to call when nothing is held."""
        with self._lock:
            resource, self._resource = self._resource, None
            if resource is not None and self._closer is not None:
                self._closer(resource)
                logger.info("Session %r released", self._name)

    def reset(self) -> T:
        """Discard the current resource and acquire a fresh one."""
        with self._lock:
            self.release()
            return self.acquire()

    @contextmanager
    def use(self) -> Iterator[T]:
        """Hold the lock for the duration of one operation."""
        with self._lock:
            yield self.acquire()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._resource is not None

    @property
    def generation(self) -> int:
        """Number of times a resource has been created."""
        return self._generation
