"""Visual monitoring - screenshot capture and reference image comparison.

Similarity is the normalized mean absolute difference of the two images after
both are converted to grayscale and resized onto a common grid:

    similarity = 1 - mean(|a - b|) / 255

Identical payloads short-circuit to 1.0. The score is deterministic and falls
as more pixels differ or differ by more. A page is "changed" when similarity
drops below the threshold (0.98 by default).
"""
import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Union

from PIL import Image, ImageChops, ImageStat, UnidentifiedImageError

from ..config import settings
from ..domain import ImageStatus, ReferenceSnapshot, Target
from ..errors import CaptureFailure, ComparatorFailure, ErrorKind

logger = logging.getLogger(__name__)

# Common grid both images are resampled onto before comparison
COMPARE_SIZE = (256, 256)

ImagePayload = Union[bytes, str]


class ScreenshotCapture(Protocol):
    """Renders a page and returns image bytes."""

    async def capture(self, url: str) -> bytes:
        ...


@dataclass(frozen=True)
class Comparison:
    """Result of comparing the current capture with one reference snapshot."""
    label: str
    similarity: float
    changed: bool
    error: Optional[str] = None

    @property
    def change_percentage(self) -> float:
        return round((1 - self.similarity) * 100, 2)


@dataclass
class VisualCheckResult:
    """Aggregate verdict of one visual check across all reference snapshots."""
    status: ImageStatus
    checked_at: datetime
    comparisons: List[Comparison] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status == ImageStatus.CHANGED

    @property
    def max_change_percentage(self) -> float:
        if not self.comparisons:
            return 0.0
        return max(c.change_percentage for c in self.comparisons)


def decode_payload(payload: ImagePayload) -> bytes:
    """Accept raw bytes or a data: URL / bare base64 string."""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    text = payload.strip()
    if text.startswith("data:"):
        _, _, text = text.partition(",")
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ComparatorFailure(f"Image payload is not valid base64: {e}")


def _load_grayscale(data: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.convert("L").resize(COMPARE_SIZE, Image.Resampling.BILINEAR)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise ComparatorFailure(f"Could not decode image: {e}")


class ImageComparator:
    """Compares captured pages against reference snapshots."""

    def __init__(self, threshold: Optional[float] = None):
        self.threshold = threshold if threshold is not None else settings.similarity_threshold

    def similarity(self, reference: ImagePayload, current: ImagePayload) -> float:
        """Similarity score in [0, 1]. Raises ComparatorFailure on undecodable input."""
        if reference == current:
            return 1.0

        ref_bytes = decode_payload(reference)
        cur_bytes = decode_payload(current)
        if ref_bytes == cur_bytes:
            return 1.0

        ref_img = _load_grayscale(ref_bytes)
        cur_img = _load_grayscale(cur_bytes)

        diff = ImageChops.difference(ref_img, cur_img)
        mean_diff = ImageStat.Stat(diff).mean[0]
        return max(0.0, min(1.0, 1 - mean_diff / 255))

    def compare(self, reference: ImagePayload, current: ImagePayload, label: str = "") -> Comparison:
        """Compare one reference with the current capture.

        A broken comparison reports full similarity with the error attached.
        """
        try:
            score = self.similarity(reference, current)
        except ComparatorFailure as e:
            logger.error(f"{ErrorKind.COMPARATOR_FAILURE.value} for {label or 'snapshot'}: {e}")
            return Comparison(label=label, similarity=1.0, changed=False, error=str(e))
        except Exception as e:
            logger.error(f"Image comparison failed for {label or 'snapshot'}: {type(e).__name__}: {e}")
            return Comparison(
                label=label,
                similarity=1.0,
                changed=False,
                error=f"{ErrorKind.COMPARATOR_FAILURE.value}: {e}",
            )

        return Comparison(label=label, similarity=score, changed=score < self.threshold)

    def compare_all(
        self,
        references: Sequence[ReferenceSnapshot],
        current: ImagePayload,
    ) -> List[Comparison]:
        """Compare the current capture against every reference, in order."""
        return [self.compare(ref.data, current, label=ref.label) for ref in references]

    async def check(
        self,
        url: str,
        references: Sequence[ReferenceSnapshot],
        capture: ScreenshotCapture,
    ) -> VisualCheckResult:
        """Capture the page once and compare it with all references."""
        now = datetime.utcnow()
        try:
            current = await capture.capture(url)
        except Exception as e:
            logger.error(f"Screenshot capture failed for {url}: {e}")
            return VisualCheckResult(
                status=ImageStatus.SAME,
                checked_at=now,
                error=f"{ErrorKind.COMPARATOR_FAILURE.value}: capture failed: {e}",
            )

        comparisons = self.compare_all(references, current)
        changed = any(c.changed for c in comparisons)
        errors = [c.error for c in comparisons if c.error]

        for c in comparisons:
            logger.debug(f"Image comparison for {url} ({c.label}): {c.similarity * 100:.1f}% similar")
        if changed:
            logger.info(f"Visual change detected for {url}")

        return VisualCheckResult(
            status=ImageStatus.CHANGED if changed else ImageStatus.SAME,
            checked_at=now,
            comparisons=comparisons,
            error="; ".join(errors) if errors else None,
        )

    async def check_target(self, target: Target, capture: ScreenshotCapture) -> VisualCheckResult:
        """Visual check of a target against its stored reference snapshots."""
        return await self.check(target.url, target.reference_snapshots, capture)


class PlaywrightCapture:
    """Full-page PNG screenshots with headless Chromium."""

    def __init__(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        self.width = width or settings.screenshot_width
        self.height = height or settings.screenshot_height
        self.timeout = timeout if timeout is not None else settings.probe_timeout_seconds

    async def capture(self, url: str) -> bytes:
        from playwright.async_api import Error as PlaywrightError, async_playwright

        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(viewport={"width": self.width, "height": self.height})
                    await page.goto(url, wait_until="networkidle", timeout=self.timeout * 1000)
                    return await page.screenshot(full_page=True, type="png")
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise CaptureFailure(f"Screenshot capture failed: {e}")
