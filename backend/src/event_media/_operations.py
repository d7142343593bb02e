"""
Importable high-level operations for the event media pipeline.

These functions wire the adapters and components together from the loaded
configuration. They are called directly from Python code, from the
`event-media` CLI and from the HTTP API. Indexing, thumbnail repair, explicit
deletes and reaping take the per-event lock, so the three never run against
the same event at once.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from functools import cached_property
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .auth import check_admin, check_cron
from .biometrics import BiometricIndex, make_biometric_index
from .config import get_config
from .errors import InvalidInput
from .indexer import FaceIndexer
from .layout import (
    Layout,
    cover_path,
    original_path,
    resolve,
    thumb_path,
    validate_file_name,
    validate_slug,
)
from .progress import ProgressEvent
from .reaper import LifecycleReaper
from .search import IdentitySearch
from .storage import MetadataStore, ObjectStore, event_lock, make_object_store
from .storage.metadata_db import utcnow
from .thumbnails import ThumbnailPipeline, load_watermark

logger = logging.getLogger(__name__)

PAGE_MIN = 12
PAGE_MAX = 60
PAGE_DEFAULT = 24


class Pipeline:
    """Adapters and components built lazily from one configuration.

    Any adapter can be injected instead (tests, alternative backends).
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        originals: Optional[ObjectStore] = None,
        previews: Optional[ObjectStore] = None,
        metadata: Optional[MetadataStore] = None,
        biometrics: Optional[BiometricIndex] = None
    ):
        self.config = config or get_config()
        if originals is not None:
            self.originals = originals
        if previews is not None:
            self.previews = previews
        if metadata is not None:
            self.metadata = metadata
        if biometrics is not None:
            self.biometrics = biometrics

    @cached_property
    def originals(self) -> ObjectStore:
        return make_object_store(self.config, "originals")

    @cached_property
    def previews(self) -> ObjectStore:
        return make_object_store(self.config, "previews")

    @cached_property
    def metadata(self) -> MetadataStore:
        return MetadataStore(
            self.config["database"]["url"],
            timeout=float(self.config["remote"]["timeout"]),
        )

    @cached_property
    def biometrics(self) -> BiometricIndex:
        return make_biometric_index(self.config)

    @cached_property
    def indexer(self) -> FaceIndexer:
        section = self.config["indexing"]
        return FaceIndexer(
            originals=self.originals,
            metadata=self.metadata,
            biometrics=self.biometrics,
            max_faces=int(section["max_faces"]),
            quality_filter=section["quality_filter"],
        )

    @cached_property
    def thumbnails(self) -> ThumbnailPipeline:
        section = self.config["thumbnails"]
        watermark = load_watermark(
            self.config["paths"].get("watermark_path") or None,
            text=section["watermark_text"],
            opacity=int(section["watermark_opacity"]),
        )
        return ThumbnailPipeline(
            originals=self.originals,
            previews=self.previews,
            width=int(section["width"]),
            quality=int(section["quality"]),
            fmt=section["format"],
            watermark=watermark,
            attempts=int(section["attempts"]),
            base_delay=float(section["base_delay"]),
            cache_control=section.get("cache_control") or None,
        )

    @cached_property
    def search(self) -> IdentitySearch:
        section = self.config["search"]
        return IdentitySearch(
            originals=self.originals,
            metadata=self.metadata,
            biometrics=self.biometrics,
            threshold=float(section["threshold"]),
            max_workers=int(section["max_workers"]),
            strategy=section["strategy"],
        )

    @cached_property
    def reaper(self) -> LifecycleReaper:
        section = self.config["lifecycle"]
        return LifecycleReaper(
            originals=self.originals,
            previews=self.previews,
            metadata=self.metadata,
            biometrics=self.biometrics,
            batch_size=int(section["batch_size"]),
            face_delete_batch=int(section["face_delete_batch"]),
            storage_delete_batch=int(section["storage_delete_batch"]),
            lock=self.lock,
        )

    @contextmanager
    def lock(self, slug: str):
        """Hold the per-event lock for slug."""
        section = self.config["locks"]
        with event_lock(
            Path(self.config["paths"]["locks_dir"]),
            slug,
            timeout=float(section["timeout"]),
            poll_interval=float(section["poll_interval"]),
        ) as held:
            yield held

    def authorize_admin(self, key: Optional[str]):
        """Raise Unauthorized unless key matches the admin password (if set)."""
        check_admin(key, self.config["security"].get("admin_password"))

    def authorize_cron(self, authorization: Optional[str]):
        """Raise Unauthorized unless the scheduler header carries the cron secret."""
        check_cron(authorization, self.config["security"].get("cron_secret"))


_default_pipeline: Optional[Pipeline] = None
_default_lock = threading.Lock()


def get_pipeline() -> Pipeline:
    """Process-wide pipeline built from the loaded configuration."""
    global _default_pipeline
    with _default_lock:
        if _default_pipeline is None:
            _default_pipeline = Pipeline()
        return _default_pipeline


# ----------------------------------------------------------------------
# Event administration
# ----------------------------------------------------------------------

def create_event(
    name: str,
    event_date: str,
    *,
    location: Optional[str] = None,
    image_url: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    expires_in_days: Optional[int] = None,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Create an event.

    Args:
        name: Event title; the slug is derived from it.
        event_date: YYYY-MM-DD or DD/MM/YYYY.
        location: Free-text location.
        image_url: Public cover image reference.
        expires_at: Absolute expiry (naive UTC).
        expires_in_days: Relative expiry, used when expires_at is not given.
        pipeline: Pipeline to use (default: process-wide).

    Returns:
        The created event as a dict.
    """
    pipeline = pipeline or get_pipeline()
    if expires_at is None and expires_in_days is not None:
        expires_at = utcnow() + timedelta(days=int(expires_in_days))
    event = pipeline.metadata.create_event(
        name=name,
        event_date=event_date,
        location=location,
        image_url=image_url,
        expires_at=expires_at,
    )
    return event.to_dict()


def update_event(
    slug: str,
    *,
    name: Optional[str] = None,
    location: Optional[str] = None,
    event_date: Optional[str] = None,
    image_url: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Patch an event's name, location, date, cover or expiry."""
    pipeline = pipeline or get_pipeline()
    event = pipeline.metadata.update_event(
        validate_slug(slug),
        name=name,
        location=location,
        event_date=event_date,
        image_url=image_url,
        expires_at=expires_at,
    )
    return event.to_dict()


def list_events(*, pipeline: Optional[Pipeline] = None) -> List[Dict[str, Any]]:
    """All events, newest first."""
    pipeline = pipeline or get_pipeline()
    return [event.to_dict() for event in pipeline.metadata.list_events()]


def delete_event(slug: str, *, pipeline: Optional[Pipeline] = None) -> Dict[str, Any]:
    """Remove one event everywhere now, whatever its expiry.

    Runs the same cascade as the reaper under the per-event lock.
    """
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    with pipeline.lock(slug):
        result = pipeline.reaper.reap_event(slug)
    return result.to_dict()


# ----------------------------------------------------------------------
# Uploads and listing
# ----------------------------------------------------------------------

def create_upload_url(
    slug: str,
    file_name: Optional[str] = None,
    *,
    kind: str = "original",
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Signed URL for uploading an original (current layout) or the event cover.

    Args:
        slug: Event slug.
        file_name: Original file name (ignored for covers).
        kind: 'original' or 'cover'.
        pipeline: Pipeline to use (default: process-wide).

    Returns:
        Dict with bucket, path and signed_url (plus token where the backend issues one).

    Raises:
        InvalidInput: Invalid slug, file name or upload kind.
    """
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    expires = int(pipeline.config["storage"]["signed_url_expires"])

    if kind == "cover":
        store = pipeline.previews
        path = cover_path(slug)
    elif kind == "original":
        store = pipeline.originals
        path = original_path(slug, validate_file_name(file_name), Layout.CURRENT)
    else:
        raise InvalidInput(f"invalid_upload_kind: {kind!r}")

    signed = store.create_signed_upload_url(path, expires=expires)
    return {"bucket": store.bucket, **signed}


def list_photos(
    slug: str,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """One page of an event's originals, with their thumbnail paths.

    limit is clamped to 12-60. Legacy-layout originals have no guaranteed
    thumbnail, so their thumb_path is None. next_offset is None on the last page.
    """
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    limit = max(PAGE_MIN, min(PAGE_MAX, int(limit or PAGE_DEFAULT)))
    offset = max(0, int(offset or 0))

    resolution = resolve(pipeline.originals, slug)
    names = sorted(resolution.originals)[offset:offset + limit]
    fmt = pipeline.config["thumbnails"]["format"]

    items = []
    for name in names:
        items.append({
            "original_path": resolution.originals[name],
            "thumb_path": thumb_path(slug, name, fmt) if resolution.layout is Layout.CURRENT else None,
        })

    return {
        "items": items,
        "layout": resolution.layout.value if resolution.layout else None,
        "next_offset": None if len(items) < limit else offset + limit,
    }


# ----------------------------------------------------------------------
# Indexing, thumbnails, search, reaping
# ----------------------------------------------------------------------

def iter_index_event(
    slug: str,
    *,
    cancel_event: Optional[threading.Event] = None,
    pipeline: Optional[Pipeline] = None,
) -> Iterator[ProgressEvent]:
    """Index an event under its lock, yielding progress records.

    The lock is taken when iteration starts and released when the generator
    finishes or is closed.
    """
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    with pipeline.lock(slug):
        yield from pipeline.indexer.iter_index(slug, cancel_event=cancel_event)


def index_event(
    slug: str,
    *,
    show_progress: bool = False,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Index an event under its lock and return the statistics."""
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    with pipeline.lock(slug):
        stats = pipeline.indexer.index_event(slug, show_progress=show_progress)
    return stats.to_dict()


def iter_repair_thumbnails(
    slug: str,
    *,
    attempts: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    pipeline: Optional[Pipeline] = None,
) -> Iterator[ProgressEvent]:
    """Repair missing thumbnails under the event lock, yielding progress records."""
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    with pipeline.lock(slug):
        yield from pipeline.thumbnails.iter_repair(slug, attempts=attempts, cancel_event=cancel_event)


def repair_thumbnails(
    slug: str,
    *,
    attempts: Optional[int] = None,
    show_progress: bool = False,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Repair missing thumbnails under the event lock and return the statistics."""
    pipeline = pipeline or get_pipeline()
    slug = validate_slug(slug)
    with pipeline.lock(slug):
        stats = pipeline.thumbnails.repair(slug, attempts=attempts, show_progress=show_progress)
    return stats.to_dict()


def generate_thumbnail(
    slug: str,
    src_path: str,
    *,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Render the thumbnail of one original."""
    pipeline = pipeline or get_pipeline()
    target = pipeline.thumbnails.generate_one(slug, src_path)
    return {"ok": True, "thumb_path": target}


def search_selfie(
    selfie: bytes,
    slug: str,
    *,
    threshold: Optional[float] = None,
    strategy: Optional[str] = None,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Find the photos of an event that contain the selfie's person."""
    pipeline = pipeline or get_pipeline()
    report = pipeline.search.search_report(selfie, slug, threshold=threshold, strategy=strategy)
    return report.to_dict()


def reap_expired(
    *,
    now: Optional[datetime] = None,
    cancel_event: Optional[threading.Event] = None,
    pipeline: Optional[Pipeline] = None,
) -> Dict[str, Any]:
    """Remove expired events; each event is reaped under its lock."""
    pipeline = pipeline or get_pipeline()
    summary = pipeline.reaper.reap_expired(now=now, cancel_event=cancel_event)
    return summary.to_dict()


# ----------------------------------------------------------------------
# Biometric collections
# ----------------------------------------------------------------------

def list_collections(*, pipeline: Optional[Pipeline] = None) -> List[str]:
    """Collection ids known to the biometric index."""
    pipeline = pipeline or get_pipeline()
    return pipeline.biometrics.list_collections()


def create_collection(slug: str, *, pipeline: Optional[Pipeline] = None) -> Dict[str, Any]:
    """Create the biometric collection of an event ahead of indexing."""
    pipeline = pipeline or get_pipeline()
    collection_id = pipeline.biometrics.collection_id(validate_slug(slug))
    created = pipeline.biometrics.create_collection(collection_id)
    return {"collection_id": collection_id, "created": created}
