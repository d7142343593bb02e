"""Derived asset (thumbnail) pipeline.

Thumbnails are width-bounded, watermark-tiled re-encodings of originals,
stored in the previews bucket at a path derived from the original's base
name under the current layout's thumb folder, whichever layout the original
came from.

Two modes:
- generate_one: render and upload the thumbnail of a single original
- repair: compute originals without a thumbnail and render each of them
  under a bounded retry, streaming per-item progress
"""

import io
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Any

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError
from tqdm import tqdm

from .errors import InvalidInput
from .layout import (
    file_name_of,
    layout_of,
    original_candidates,
    resolve,
    thumb_name,
    thumb_path,
    thumb_prefix,
    validate_slug,
)
from .progress import ATTEMPT, DONE, FAILED, FILE, PROGRESS, START, ProgressEvent, event
from .retry import RetryCancelled, call_with_retry, iter_retry
from .storage import ObjectStore

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    'webp': 'image/webp',
    'jpeg': 'image/jpeg',
    'jpg': 'image/jpeg',
    'png': 'image/png',
}

# Pillow encoder names
PIL_FORMATS = {
    'webp': 'WEBP',
    'jpeg': 'JPEG',
    'jpg': 'JPEG',
    'png': 'PNG',
}

WATERMARK_TILE_SIZE = (300, 180)


def text_watermark(text: str, opacity: int = 64) -> Image.Image:
    """Render a transparent tile carrying a diagonal text watermark.

    Args:
        text: Watermark text
        opacity: Alpha of the text (0-255)

    Returns:
        RGBA tile image
    """
    tile = Image.new("RGBA", WATERMARK_TILE_SIZE, (0, 0, 0, 0))
    draw = ImageDraw.Draw(tile)
    font = ImageFont.load_default()
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (tile.width - (right - left)) // 2
    y = (tile.height - (bottom - top)) // 2
    draw.text((x, y), text, font=font, fill=(255, 255, 255, opacity))
    return tile.rotate(25, resample=Image.Resampling.BICUBIC)


def load_watermark(
    path: Optional[str] = None,
    text: str = "PREVIEW",
    opacity: int = 64
) -> Image.Image:
    """Load the watermark tile from a file, or render a text tile.

    Args:
        path: PNG with transparency (optional)
        text: Fallback watermark text
        opacity: Alpha of the fallback text

    Returns:
        RGBA tile image
    """
    if path and Path(path).is_file():
        with Image.open(path) as wm:
            tile = wm.convert("RGBA")
        logger.debug(f"Loaded watermark {path} ({tile.width}x{tile.height})")
        return tile
    if path:
        logger.warning(f"Watermark {path} not found, using text watermark")
    return text_watermark(text, opacity)


def tile_watermark(image: Image.Image, watermark: Image.Image) -> Image.Image:
    """Composite a watermark tile repeatedly over the whole image."""
    base = image.convert("RGBA")
    for top in range(0, base.height, watermark.height):
        for left in range(0, base.width, watermark.width):
            # alpha_composite clips the tile at the image edges
            base.alpha_composite(watermark, dest=(left, top))
    return base


def make_thumbnail(
    data: bytes,
    width: int = 900,
    quality: int = 70,
    fmt: str = "webp",
    watermark: Optional[Image.Image] = None
) -> bytes:
    """Render a thumbnail from original image bytes.

    Steps: decode, apply EXIF orientation, shrink to `width` (never upscale),
    tile the watermark, encode.

    Args:
        data: Original image bytes
        width: Maximum output width in pixels
        quality: Encoder quality (0-100)
        fmt: Output format ('webp', 'jpeg', 'png')
        watermark: RGBA watermark tile (None for no watermark)

    Returns:
        Encoded thumbnail bytes

    Raises:
        InvalidInput: If the bytes cannot be decoded as an image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            image = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInput(f"undecodable image: {e}") from e

    if image.width > width:
        height = max(1, round(image.height * width / image.width))
        image = image.resize((width, height), Image.Resampling.LANCZOS)

    if watermark is not None:
        image = tile_watermark(image, watermark)

    if image.mode != "RGB" and fmt.lower() != "png":
        image = image.convert("RGB")

    out = io.BytesIO()
    image.save(out, format=PIL_FORMATS[fmt.lower()], quality=quality)
    return out.getvalue()


@dataclass
class MissingThumb:
    """An original without a derived asset."""
    file_name: str
    original_path: str
    thumb_path: str


@dataclass
class GapReport:
    """Result of comparing originals against existing derived assets.

    Attributes:
        slug: Event slug
        layout: Layout the originals were resolved from
        originals: Number of originals found
        thumbs_existing: Number of derived assets found
        missing: Originals whose derived asset is absent
    """
    slug: str
    layout: Optional[str] = None
    originals: int = 0
    thumbs_existing: int = 0
    missing: List[MissingThumb] = field(default_factory=list)


@dataclass
class RepairStats:
    """Statistics from a repair run."""
    total_files: int = 0
    originals: int = 0
    thumbs_existing: int = 0
    files_ok: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    failed_files: List[str] = field(default_factory=list)
    cancelled: bool = False
    processing_time: float = 0.0

    @property
    def done(self) -> int:
        """Items finished so far."""
        return self.files_ok + self.files_failed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'total_files': self.total_files,
            'originals': self.originals,
            'thumbs_existing': self.thumbs_existing,
            'files_ok': self.files_ok,
            'files_failed': self.files_failed,
            'files_skipped': self.files_skipped,
            'failed_files': self.failed_files,
            'cancelled': self.cancelled,
            'processing_time': self.processing_time,
        }


def _is_retryable(exc: Exception) -> bool:
    # Undecodable originals fail the same way every time
    return not isinstance(exc, InvalidInput)


class ThumbnailPipeline:
    """Generates and repairs derived assets for events.

    Usage:
        pipeline = ThumbnailPipeline(originals=originals_store, previews=previews_store)

        for record in pipeline.iter_repair('carrera-2025'):
            print(record.to_json(), end='')
    """

    def __init__(
        self,
        originals: ObjectStore,
        previews: ObjectStore,
        width: int = 900,
        quality: int = 70,
        fmt: str = "webp",
        watermark: Optional[Image.Image] = None,
        attempts: int = 5,
        base_delay: float = 0.25,
        cache_control: Optional[str] = "31536000",
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize thumbnail pipeline.

        Args:
            originals: Object store holding original photos
            previews: Object store receiving derived assets
            width: Maximum thumbnail width
            quality: Encoder quality
            fmt: Output format (also the derived file extension)
            watermark: RGBA watermark tile
            attempts: Default attempt ceiling per item in repair mode
            base_delay: First backoff delay in seconds, doubled per attempt
            cache_control: Cache lifetime attached to uploads
            sleep: Sleep function (injectable for tests)
        """
        self.originals = originals
        self.previews = previews
        self.width = width
        self.quality = quality
        self.fmt = fmt.lower()
        self.watermark = watermark
        self.attempts = attempts
        self.base_delay = base_delay
        self.cache_control = cache_control
        self.sleep = sleep

        if self.fmt not in PIL_FORMATS:
            raise ValueError(f"Unsupported thumbnail format: {fmt}")

    def render(self, data: bytes) -> bytes:
        """Render thumbnail bytes with this pipeline's settings."""
        return make_thumbnail(
            data,
            width=self.width,
            quality=self.quality,
            fmt=self.fmt,
            watermark=self.watermark
        )

    def _generate(self, slug: str, candidates: List[str], file_name: str) -> str:
        source_path, data = self.originals.download_first(candidates)
        output = self.render(data)
        target = thumb_path(slug, file_name, self.fmt)
        self.previews.upload(
            target,
            output,
            content_type=CONTENT_TYPES[self.fmt],
            overwrite=True,
            cache_control=self.cache_control
        )
        logger.debug(f"Thumbnail {source_path} -> {target} ({len(output)} bytes)")
        return target

    def generate_one(self, slug: str, original: str, attempts: int = 1) -> str:
        """Render and upload the thumbnail of one original.

        The original is read from the current layout, falling back to the
        legacy layout if absent there. A full object path may be given
        instead of a file name; it is tried first.

        Args:
            slug: Event slug
            original: File name or object path of the original
            attempts: Attempt ceiling (1 = no retry)

        Returns:
            Object path of the uploaded thumbnail

        Raises:
            InvalidInput: Missing slug/file, or undecodable image
            ObjectNotFound: If the original is in neither layout
            RemoteError: On storage failure
        """
        slug = validate_slug(slug)
        if not original or not original.strip():
            raise InvalidInput("missing_file")

        file_name = file_name_of(original.strip())
        candidates = original_candidates(slug, file_name)
        if "/" in original and layout_of(slug, original) is not None and original not in candidates:
            candidates.insert(0, original)

        return call_with_retry(
            lambda: self._generate(slug, candidates, file_name),
            attempts=attempts,
            base_delay=self.base_delay,
            sleep=self.sleep,
            retry_on=_is_retryable
        )

    def find_missing(self, slug: str) -> GapReport:
        """Compute the originals of an event that have no derived asset.

        Basenames are compared case-sensitively with extensions stripped.

        Args:
            slug: Event slug

        Returns:
            GapReport listing the missing items in name order
        """
        slug = validate_slug(slug)
        resolution = resolve(self.originals, slug)

        suffix = f".{self.fmt}"
        existing = {
            entry.name[:-len(suffix)]
            for entry in self.previews.list(thumb_prefix(slug))
            if not entry.is_folder and entry.name.endswith(suffix)
        }

        report = GapReport(
            slug=slug,
            layout=resolution.layout.value if resolution.layout else None,
            originals=len(resolution.originals),
            thumbs_existing=len(existing),
        )
        for name in sorted(resolution.originals):
            expected = thumb_name(name, self.fmt)[:-len(suffix)]
            if expected not in existing:
                report.missing.append(MissingThumb(
                    file_name=name,
                    original_path=resolution.originals[name],
                    thumb_path=thumb_path(slug, name, self.fmt),
                ))

        logger.info(
            f"{slug}: {report.originals} originals, {report.thumbs_existing} thumbs, "
            f"{len(report.missing)} missing"
        )
        return report

    def _attempt_events(self, name: str, attempts_iter) -> Iterator[ProgressEvent]:
        """Relay failed attempts as progress records and return the result."""
        while True:
            try:
                attempt, exc = next(attempts_iter)
            except StopIteration as stop:
                return stop.value
            yield event(ATTEMPT, name=name, attempt=attempt, error=str(exc))

    def iter_repair(
        self,
        slug: str,
        attempts: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        stats: Optional[RepairStats] = None
    ) -> Iterator[ProgressEvent]:
        """Generate every missing thumbnail, yielding progress records.

        Items are processed sequentially, each under a bounded retry with
        exponential backoff. An item exhausting its attempts is reported as
        failed and the run moves on. Completed items are never rolled back
        on cancellation.

        Args:
            slug: Event slug
            attempts: Attempt ceiling per item (default: pipeline setting)
            cancel_event: Stops starting new items when set
            stats: Stats object to fill in (optional)

        Yields:
            start, then per item file / attempt* / failed? / progress, then done
        """
        start_time = time.time()
        stats = stats if stats is not None else RepairStats()
        max_attempts = attempts if attempts and attempts > 0 else self.attempts

        report = self.find_missing(slug)
        stats.total_files = len(report.missing)
        stats.originals = report.originals
        stats.thumbs_existing = report.thumbs_existing

        yield event(
            START,
            total_files=stats.total_files,
            originals=stats.originals,
            thumbs_existing=stats.thumbs_existing,
            thumbs_folder=thumb_prefix(report.slug),
            layout=report.layout
        )

        for index, item in enumerate(report.missing):
            if cancel_event is not None and cancel_event.is_set():
                stats.cancelled = True
                stats.files_skipped = stats.total_files - index
                logger.warning(f"Repair of {slug} cancelled, {stats.files_skipped} items not started")
                break

            yield event(FILE, name=item.file_name)

            candidates = [item.original_path] + [
                p for p in original_candidates(report.slug, item.file_name) if p != item.original_path
            ]
            attempts_iter = iter_retry(
                lambda: self._generate(report.slug, candidates, item.file_name),
                attempts=max_attempts,
                base_delay=self.base_delay,
                sleep=self.sleep,
                cancel_event=cancel_event,
                retry_on=_is_retryable
            )
            try:
                yield from self._attempt_events(item.file_name, attempts_iter)
                stats.files_ok += 1
            except RetryCancelled as e:
                stats.files_failed += 1
                stats.failed_files.append(item.file_name)
                yield event(FAILED, name=item.file_name, error=str(e))
            except Exception as e:
                logger.error(f"Thumbnail for {item.original_path} failed after retries: {e}")
                stats.files_failed += 1
                stats.failed_files.append(item.file_name)
                yield event(FAILED, name=item.file_name, error=str(e))

            yield event(
                PROGRESS,
                done=index + 1,
                total_files=stats.total_files,
                files_ok=stats.files_ok,
                files_failed=stats.files_failed,
                file=item.file_name
            )

        stats.processing_time = time.time() - start_time
        logger.info(
            f"Repair of {slug}: {stats.files_ok} ok, {stats.files_failed} failed, "
            f"{stats.files_skipped} skipped in {stats.processing_time:.1f}s"
        )
        yield event(
            DONE,
            total_files=stats.total_files,
            files_ok=stats.files_ok,
            files_failed=stats.files_failed,
            files_skipped=stats.files_skipped,
            failed_files=list(stats.failed_files),
            cancelled=stats.cancelled
        )

    def repair(
        self,
        slug: str,
        attempts: Optional[int] = None,
        show_progress: bool = False,
        cancel_event: Optional[threading.Event] = None
    ) -> RepairStats:
        """Run a repair to completion and return its statistics."""
        stats = RepairStats()
        pbar = None
        try:
            for record in self.iter_repair(slug, attempts=attempts, cancel_event=cancel_event, stats=stats):
                if record.type == START and show_progress:
                    pbar = tqdm(total=record['total_files'], desc=f"Thumbnails {slug}", unit="img")
                elif record.type == PROGRESS and pbar is not None:
                    pbar.update(1)
                    pbar.set_postfix({'ok': stats.files_ok, 'failed': stats.files_failed})
        finally:
            if pbar is not None:
                pbar.close()
        return stats

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"ThumbnailPipeline(width={self.width}, quality={self.quality}, "
            f"format={self.fmt}, attempts={self.attempts})"
        )


__all__ = [
    'GapReport',
    'MissingThumb',
    'RepairStats',
    'ThumbnailPipeline',
    'load_watermark',
    'make_thumbnail',
]
