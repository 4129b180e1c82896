"""Shared test doubles for the extraction provider, upstream HTTP and collaborators."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from requests.structures import CaseInsensitiveDict

from moodstream.domain.library.history import FavoritesStore, RetrievalHistory
from moodstream.domain.streaming.extraction import ExtractionProvider, StreamInfo


class FrozenClock:
    """Callable clock the index manager can be driven with."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingPublisher:
    def __init__(self):
        self.events: List[dict] = []

    def publish(self, event: dict) -> None:
        self.events.append(event)

    def names(self) -> List[str]:
        return [event["event"] for event in self.events]


class InMemoryHistory(RetrievalHistory):
    def __init__(self, entries: Iterable = ()):
        self.entries = list(entries)

    def completed_records(self):
        return [entry for entry in self.entries if entry[0].status == "completed"]

    def record(self, snapshot, metadata) -> None:
        self.entries = [e for e in self.entries if e[0].retrieval_id != snapshot.retrieval_id]
        self.entries.append((snapshot, metadata))


class InMemoryFavorites(FavoritesStore):
    def __init__(self, track_ids: Iterable[str] = ()):
        self.track_ids = set(track_ids)

    def favorite_ids(self):
        return set(self.track_ids)


class FakeExtractionProvider(ExtractionProvider):
    def __init__(
        self,
        urls: Optional[Dict[str, Sequence[str]]] = None,
        error: Optional[Exception] = None,
        content_type: Optional[str] = None,
    ):
        # Each track id maps to the URLs returned by successive extractions
        self.urls = {key: list(value) for key, value in (urls or {}).items()}
        self.error = error
        self.content_type = content_type
        self.calls: List[str] = []
        self.invalidated: List[str] = []

    def stream_info(self, track_id: str) -> StreamInfo:
        self.calls.append(track_id)
        if self.error is not None:
            raise self.error
        queue = self.urls.get(track_id) or []
        url = queue.pop(0) if len(queue) > 1 else (queue[0] if queue else None)
        if url is None:
            raise KeyError(track_id)
        return StreamInfo(url=url, content_type=self.content_type)

    def invalidate(self, track_id: str) -> None:
        self.invalidated.append(track_id)


class FakeUpstreamResponse:
    def __init__(self, status_code: int = 200, headers: Optional[Dict[str, str]] = None, chunks: Sequence[bytes] = ()):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._chunks = list(chunks)
        self.closed = False
        self.iterated = False

    def iter_content(self, chunk_size: int = 1):
        self.iterated = True
        for chunk in self._chunks:
            yield chunk

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for the ``requests`` module: records calls and replays queued outcomes."""

    def __init__(self, responses: Iterable = (), head_responses: Iterable = ()):
        self.responses = list(responses)
        self.head_responses = list(head_responses)
        self.calls: List[dict] = []

    def _next(self, queue: list):
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get(self, url, headers=None, stream=False, timeout=None):
        self.calls.append({"method": "GET", "url": url, "headers": dict(headers or {}), "stream": stream, "timeout": timeout})
        return self._next(self.responses)

    def head(self, url, headers=None, allow_redirects=False, timeout=None):
        self.calls.append({"method": "HEAD", "url": url, "headers": dict(headers or {}), "timeout": timeout})
        return self._next(self.head_responses)


def write_media(root: Path, name: str, size: int) -> Path:
    path = Path(root) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(i % 251 for i in range(size)))
    return path


def future_expiry(seconds: int = 3600) -> int:
    return int(datetime.now(timezone.utc).timestamp()) + seconds


def upstream_url(path: str = "videoplayback", expire: Optional[int] = None, **params) -> str:
    query = dict(params)
    query.setdefault("expire", expire if expire is not None else future_expiry())
    rendered = "&".join(f"{key}={value}" for key, value in query.items())
    return f"https://rr1.googlevideo.com/{path}?{rendered}"
