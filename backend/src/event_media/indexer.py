"""Idempotent face indexing of an event's photos.

This module provides the FaceIndexer class, which walks the originals of an
event, submits every photo not yet indexed to the event's biometric
collection, and records the returned faces in the metadata store.
"""

import logging
import threading
import time
from typing import Iterator, List, Optional

from tqdm import tqdm

from .biometrics import BiometricIndex
from .errors import PipelineError
from .face import IndexingResult, IndexingStats, IndexStatus
from .layout import resolve, validate_slug
from .progress import DONE, ERROR, FAILED, FILE, PROGRESS, START, ProgressEvent, event
from .storage import MetadataStore, ObjectStore

logger = logging.getLogger(__name__)


class FaceIndexer:
    """Indexer for the photos of one event at a time.

    Features:
    - Current/legacy layout resolution
    - Dedup by (event slug, photo path) before any remote call
    - Per-photo failure isolation (every photo is attempted)
    - Streaming progress records
    - Cancellation between photos

    Usage:
        indexer = FaceIndexer(
            originals=originals_store,
            metadata=metadata_store,
            biometrics=rekognition_index
        )

        stats = indexer.index_event('carrera-2025')
        print(f"Indexed {stats.indexed} photos, skipped {stats.skipped}")
    """

    def __init__(
        self,
        originals: ObjectStore,
        metadata: MetadataStore,
        biometrics: BiometricIndex,
        max_faces: int = 10,
        quality_filter: str = "AUTO"
    ):
        """Initialize face indexer.

        Args:
            originals: Object store holding original photos
            metadata: Metadata store for face rows
            biometrics: Biometric index holding the per-event collections
            max_faces: Maximum faces indexed per photo
            quality_filter: Service-side quality filter
        """
        self.originals = originals
        self.metadata = metadata
        self.biometrics = biometrics
        self.max_faces = max_faces
        self.quality_filter = quality_filter

    def iter_index(
        self,
        slug: str,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[ProgressEvent]:
        """Index an event, yielding progress records as work happens.

        Records: start, then per photo a file record, a failed record if it
        failed and a progress record, and finally done.

        Args:
            slug: Event slug
            cancel_event: Stops starting new photos when set

        Yields:
            ProgressEvent records

        Raises:
            InvalidInput: If the slug is missing or invalid
        """
        stats = IndexingStats()
        yield from self._run(validate_slug(slug), stats, cancel_event)

    def index_event(
        self,
        slug: str,
        show_progress: bool = False,
        cancel_event: Optional[threading.Event] = None
    ) -> IndexingStats:
        """Index an event and return the final statistics.

        Args:
            slug: Event slug
            show_progress: Show a tqdm progress bar
            cancel_event: Stops starting new photos when set

        Returns:
            IndexingStats for this run
        """
        slug = validate_slug(slug)
        stats = IndexingStats()
        pbar = None

        try:
            for record in self._run(slug, stats, cancel_event):
                if record.type == START and show_progress:
                    pbar = tqdm(total=record['total'], desc=f"Indexing {slug}", unit="img")
                elif record.type == PROGRESS and pbar is not None:
                    pbar.update(1)
                    pbar.set_postfix({
                        'indexed': stats.indexed,
                        'skipped': stats.skipped,
                        'failed': stats.failed
                    })
        finally:
            if pbar is not None:
                pbar.close()

        return stats

    def _run(
        self,
        slug: str,
        stats: IndexingStats,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[ProgressEvent]:
        start_time = time.time()
        resolution = resolve(self.originals, slug)
        stats.total_photos = len(resolution.originals)
        stats.layout = resolution.layout.value if resolution.layout else None

        yield event(START, total=stats.total_photos, layout=stats.layout)

        if resolution.is_empty:
            logger.info(f"Nothing to index for {slug}")
            stats.processing_time = time.time() - start_time
            yield self._done(stats)
            return

        collection_id = self.biometrics.collection_id(slug)
        try:
            self.biometrics.ensure_collection(collection_id)
        except PipelineError as e:
            # Every photo would fail; report them all instead of aborting
            logger.error(f"Collection {collection_id} unavailable: {e}")
            yield event(ERROR, message=f"collection_unavailable: {e}")
            for path in resolution.paths:
                stats.add(IndexingResult(photo_path=path, errors=["collection_unavailable"]))
            stats.processing_time = time.time() - start_time
            yield self._done(stats)
            return

        for path in resolution.paths:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Indexing of {slug} cancelled after {stats.done} photos")
                break

            yield event(FILE, name=path)
            result = self.index_photo(slug, collection_id, path)
            stats.add(result)

            if result.status is IndexStatus.FAILED:
                yield event(FAILED, name=path, reason="; ".join(result.errors) or "unknown")
            yield event(
                PROGRESS,
                done=stats.done,
                indexed=stats.indexed,
                skipped=stats.skipped,
                failed=stats.failed
            )

        stats.processing_time = time.time() - start_time
        logger.info(
            f"Indexing of {slug} complete: {stats.indexed} indexed, {stats.skipped} skipped, "
            f"{stats.failed} failed, {stats.faces_indexed} faces in {stats.processing_time:.1f}s"
        )
        yield self._done(stats)

    @staticmethod
    def _done(stats: IndexingStats) -> ProgressEvent:
        return event(
            DONE,
            indexed=stats.indexed,
            skipped=stats.skipped,
            failed=stats.failed,
            faces_indexed=stats.faces_indexed,
            failed_files=list(stats.failed_files)
        )

    def index_photo(self, slug: str, collection_id: str, photo_path: str) -> IndexingResult:
        """Index a single photo.

        Never raises: every failure is recorded on the result.

        Args:
            slug: Event slug
            collection_id: Biometric collection of the event
            photo_path: Object path of the original

        Returns:
            IndexingResult with details of the indexing operation
        """
        result = IndexingResult(photo_path=photo_path)

        try:
            if self.metadata.has_indexed_photo(slug, photo_path):
                logger.debug(f"Skipping already indexed {photo_path}")
                result.status = IndexStatus.SKIPPED
                return result

            data = self.originals.download(photo_path)
            if not data:
                result.errors.append("empty_file")
                return result

            records = self.biometrics.index_faces(
                collection_id,
                data,
                external_image_id=photo_path,
                max_faces=self.max_faces,
                quality_filter=self.quality_filter
            )
        except Exception as e:
            logger.error(f"Error indexing {photo_path}: {e}")
            result.errors.append(str(e))
            return result

        result.faces_found = len(records)
        complete = [r for r in records if r.is_complete]
        dropped = [r.face_id for r in records if r.face_id and not r.is_complete]
        if dropped:
            logger.debug(f"Dropping {len(dropped)} partial face records from {photo_path}")
            self._discard_faces(collection_id, dropped)

        if not complete:
            logger.warning(f"No faces found in {photo_path}")
            result.errors.append("no_faces")
            return result

        try:
            result.face_ids = self.metadata.add_indexed_faces(slug, photo_path, complete)
        except PipelineError as e:
            logger.error(f"Failed to record faces of {photo_path}: {e}")
            result.errors.append(str(e))
            self._discard_faces(collection_id, [r.face_id for r in complete])
            return result

        result.status = IndexStatus.INDEXED
        return result

    def _discard_faces(self, collection_id: str, face_ids: List[str]):
        """Remove faces that have no metadata row; best effort."""
        try:
            self.biometrics.delete_faces(collection_id, face_ids)
        except PipelineError as e:
            logger.warning(f"Could not remove {len(face_ids)} orphan faces from {collection_id}: {e}")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"FaceIndexer(originals={self.originals!r}, biometrics={self.biometrics!r}, "
            f"max_faces={self.max_faces})"
        )
