"""Shared fixtures for the engine tests."""
import io
from typing import List, Optional, Sequence, Tuple

import pytest
from PIL import Image, ImageDraw

from siteguard.domain import Channel
from siteguard.engine import build_engine
from siteguard.repositories import memory_repositories
from siteguard.services.notifier import NotifyResult
from siteguard.services.prober import ProbeResult


def make_png(color=(255, 255, 255), size=(64, 64), box: Optional[Tuple[int, int, int, int]] = None) -> bytes:
    """A solid PNG, optionally with a black rectangle drawn on it."""
    img = Image.new("RGB", size, color)
    if box is not None:
        ImageDraw.Draw(img).rectangle(box, fill=(0, 0, 0))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def up(response_time_ms: int = 100, status_code: int = 200) -> ProbeResult:
    return ProbeResult(reachable=True, status_code=status_code, response_time_ms=response_time_ms)


def down(status_code: int = 500, detail: str = "HTTP 500") -> ProbeResult:
    return ProbeResult(reachable=False, status_code=status_code, response_time_ms=0, detail=detail)


class FakeProber:
    """Returns canned probe results per URL and records calls."""

    def __init__(self, results=None, default: Optional[ProbeResult] = None):
        self.results = dict(results or {})
        self.default = default or up()
        self.calls: List[str] = []

    async def probe(self, url: str) -> ProbeResult:
        self.calls.append(url)
        return self.results.get(url, self.default)


class RecordingNotifier:
    """Collects every notification; can be told to fail."""

    def __init__(self, fail: bool = False, raise_error: bool = False):
        self.fail = fail
        self.raise_error = raise_error
        self.sent: List[Tuple[Channel, List[str], str, str]] = []

    async def notify(self, channel: Channel, recipients: Sequence[str], subject: str, body: str) -> NotifyResult:
        self.sent.append((channel, list(recipients), subject, body))
        if self.raise_error:
            raise ConnectionError("transport unavailable")
        if self.fail:
            return NotifyResult(success=False, error="rejected")
        return NotifyResult(success=True)


class FakeCapture:
    """Screenshot capture returning fixed bytes."""

    def __init__(self, image: bytes):
        self.image = image
        self.urls: List[str] = []

    async def capture(self, url: str) -> bytes:
        self.urls.append(url)
        return self.image


@pytest.fixture
def repositories():
    return memory_repositories()


@pytest.fixture
def prober():
    return FakeProber()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(repositories, prober, notifier):
    return build_engine(repositories, notifier=notifier, prober=prober)
