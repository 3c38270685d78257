import threading

from modweaver.errors import SourceNotFoundError
from modweaver.sources.base import ModSource


class SourceRegistry:
    """Thread-safe lookup of configured backends by source id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: dict[str, ModSource] = {}

    def register(self, source: ModSource) -> None:
        with self._lock:
            self._sources[source.id] = source

    def get(self, source_id: str) -> ModSource:
        with self._lock:
            source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def list(self) -> list[ModSource]:
        with self._lock:
            return [self._sources[k] for k in sorted(self._sources)]

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._sources
