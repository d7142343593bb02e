"""Lifecycle reaper: permanent removal of expired events.

Each expired event is removed across all backends in a fixed order:

1. collect the event's face ids from the metadata store
2. delete those faces (and then the collection) from the biometric index
3. delete every object under the event's storage namespaces
4. delete the event's face rows and indexing-state rows
5. delete the event row

Failures in steps 1-4 are logged and counted but never stop the following
steps; the event row is always removed. Every delete tolerates an
already-absent target, so an interrupted run is resumed by running again.
"""

import logging
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ContextManager, Dict, List, Optional

from .biometrics import DELETE_FACES_CEILING, BiometricIndex
from .errors import InvalidInput, LockTimeout, PipelineError
from .layout import event_namespaces, validate_slug
from .storage import MetadataStore, ObjectStore
from .storage.metadata_db import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EventReapResult:
    """What was removed for one event.

    Attributes:
        slug: Event slug
        biometric_faces_deleted: Faces the biometric index reported deleted
        collection_deleted: True if the collection was removed in this run
        files_deleted: Objects deleted across both buckets
        face_rows_deleted: Face rows deleted
        indexed_rows_deleted: Indexing-state rows deleted
        event_deleted: True if the event row was removed
        errors: Swallowed failures, one message per failed step or batch
    """
    slug: str
    biometric_faces_deleted: int = 0
    collection_deleted: bool = False
    files_deleted: int = 0
    face_rows_deleted: int = 0
    indexed_rows_deleted: int = 0
    event_deleted: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'slug': self.slug,
            'biometric_faces_deleted': self.biometric_faces_deleted,
            'collection_deleted': self.collection_deleted,
            'files_deleted': self.files_deleted,
            'face_rows_deleted': self.face_rows_deleted,
            'indexed_rows_deleted': self.indexed_rows_deleted,
            'event_deleted': self.event_deleted,
            'errors': self.errors,
        }


@dataclass
class ReapSummary:
    """Aggregate counts of one reaper run."""
    now: datetime
    scanned: int = 0
    deleted_events: int = 0
    deleted_files: int = 0
    deleted_face_rows: int = 0
    deleted_indexed_rows: int = 0
    deleted_biometric_faces: int = 0
    cancelled: bool = False
    events: List[EventReapResult] = field(default_factory=list)

    def add(self, result: EventReapResult):
        """Fold one event's result into the totals."""
        self.events.append(result)
        self.deleted_events += int(result.event_deleted)
        self.deleted_files += result.files_deleted
        self.deleted_face_rows += result.face_rows_deleted
        self.deleted_indexed_rows += result.indexed_rows_deleted
        self.deleted_biometric_faces += result.biometric_faces_deleted

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'ok': True,
            'now': self.now.isoformat(),
            'scanned': self.scanned,
            'deleted_events': self.deleted_events,
            'deleted_files': self.deleted_files,
            'deleted_face_rows': self.deleted_face_rows,
            'deleted_indexed_rows': self.deleted_indexed_rows,
            'deleted_biometric_faces': self.deleted_biometric_faces,
            'cancelled': self.cancelled,
            'events': [e.to_dict() for e in self.events],
        }


def _batches(items: List[str], size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class LifecycleReaper:
    """Removes expired events and everything tied to them.

    Usage:
        reaper = LifecycleReaper(
            originals=originals_store,
            previews=previews_store,
            metadata=metadata_store,
            biometrics=rekognition_index
        )

        summary = reaper.reap_expired()
        print(f"Reaped {summary.deleted_events} of {summary.scanned} expired events")
    """

    def __init__(
        self,
        originals: ObjectStore,
        previews: ObjectStore,
        metadata: MetadataStore,
        biometrics: BiometricIndex,
        batch_size: int = 20,
        face_delete_batch: int = 1000,
        storage_delete_batch: int = 100,
        lock: Optional[Callable[[str], ContextManager]] = None
    ):
        """Initialize reaper.

        Args:
            originals: Object store holding original photos
            previews: Object store holding derived assets
            metadata: Metadata store
            biometrics: Biometric index
            batch_size: Maximum events reaped per run
            face_delete_batch: Face ids per biometric delete call (capped at DELETE_FACES_CEILING)
            storage_delete_batch: Objects per storage delete call
            lock: Factory returning a per-slug context manager (default: no locking)
        """
        self.stores = {'originals': originals, 'previews': previews}
        self.metadata = metadata
        self.biometrics = biometrics
        self.batch_size = batch_size
        self.face_delete_batch = max(1, min(int(face_delete_batch), DELETE_FACES_CEILING))
        self.storage_delete_batch = max(1, int(storage_delete_batch))
        self.lock = lock or (lambda slug: nullcontext())

    def reap_expired(
        self,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ReapSummary:
        """Reap up to batch_size expired events, oldest expiry first.

        Args:
            now: Reference time (default: current UTC time)
            cancel_event: Stops starting new events when set

        Returns:
            ReapSummary

        Raises:
            RemoteError: If the expired events cannot be listed
        """
        now = now or utcnow()
        summary = ReapSummary(now=now)

        events = self.metadata.list_expired_events(now=now, limit=self.batch_size)
        summary.scanned = len(events)
        logger.info(f"Reaper: {len(events)} expired events as of {now.isoformat()}")

        for ev in events:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                logger.warning("Reaper cancelled; remaining events are left for the next run")
                break

            try:
                with self.lock(ev.slug):
                    result = self.reap_event(ev.slug)
            except LockTimeout as e:
                logger.warning(f"Skipping {ev.slug}, another job holds it: {e}")
                result = EventReapResult(slug=ev.slug, errors=[f"locked: {e}"])
            summary.add(result)

        logger.info(
            f"Reaper done: events={summary.deleted_events}/{summary.scanned}, "
            f"files={summary.deleted_files}, face_rows={summary.deleted_face_rows}, "
            f"indexed_rows={summary.deleted_indexed_rows}, "
            f"biometric_faces={summary.deleted_biometric_faces}"
        )
        return summary

    def reap_event(self, slug: str) -> EventReapResult:
        """Remove one event from every backend, regardless of its expiry.

        Args:
            slug: Event slug

        Returns:
            EventReapResult with per-step counts and swallowed errors
        """
        result = EventReapResult(slug=slug)

        face_ids: List[str] = []
        steps = (
            ('face_ids', lambda: face_ids.extend(self._collect_face_ids(slug, result))),
            ('biometrics', lambda: self._delete_biometrics(slug, face_ids, result)),
            ('storage', lambda: self._delete_storage(slug, result)),
            ('rows', lambda: self._delete_rows(slug, result)),
        )
        for name, step in steps:
            try:
                step()
            except Exception as e:
                # Untranslated failures still must not keep the event row alive
                logger.exception(f"{slug}: {name} step failed unexpectedly")
                result.errors.append(f"{name}: {e}")

        try:
            result.event_deleted = self.metadata.delete_event(slug)
        except Exception as e:
            logger.error(f"{slug}: event row not deleted: {e}")
            result.errors.append(f"event_row: {e}")

        if result.errors:
            logger.warning(f"{slug}: reaped with {len(result.errors)} swallowed errors")
        else:
            logger.info(f"{slug}: reaped ({result.files_deleted} files, {result.face_rows_deleted} faces)")
        return result

    def _collect_face_ids(self, slug: str, result: EventReapResult) -> List[str]:
        try:
            return [fid for fid in self.metadata.get_face_ids_for_event(slug) if fid]
        except PipelineError as e:
            logger.error(f"{slug}: could not read face ids: {e}")
            result.errors.append(f"face_ids: {e}")
            return []

    def _delete_biometrics(self, slug: str, face_ids: List[str], result: EventReapResult):
        collection_id = self.biometrics.collection_id(slug)

        for batch in _batches(face_ids, self.face_delete_batch):
            try:
                result.biometric_faces_deleted += self.biometrics.delete_faces(collection_id, batch)
            except PipelineError as e:
                # Counted as zero deleted; storage and rows are still cleaned up
                logger.error(f"{slug}: biometric delete of {len(batch)} faces failed: {e}")
                result.errors.append(f"biometric_faces: {e}")

        try:
            result.collection_deleted = self.biometrics.delete_collection(collection_id)
        except PipelineError as e:
            logger.error(f"{slug}: collection {collection_id} not deleted: {e}")
            result.errors.append(f"collection: {e}")

    def _delete_storage(self, slug: str, result: EventReapResult):
        try:
            validate_slug(slug)
        except InvalidInput as e:
            # A malformed slug could address other events' objects
            logger.error(f"{slug}: storage left untouched: {e}")
            result.errors.append(f"storage: {e}")
            return

        for bucket, prefix in event_namespaces(slug):
            store = self.stores[bucket]
            try:
                paths = [entry.path for entry in store.walk(prefix)]
            except PipelineError as e:
                logger.error(f"{slug}: listing {store.bucket}/{prefix} failed: {e}")
                result.errors.append(f"storage_list {bucket}/{prefix}: {e}")
                continue

            for batch in _batches(paths, self.storage_delete_batch):
                try:
                    result.files_deleted += store.delete(batch)
                except PipelineError as e:
                    logger.error(f"{slug}: deleting {len(batch)} objects from {store.bucket} failed: {e}")
                    result.errors.append(f"storage_delete {bucket}/{prefix}: {e}")

    def _delete_rows(self, slug: str, result: EventReapResult):
        try:
            result.face_rows_deleted = self.metadata.delete_faces_for_event(slug)
        except PipelineError as e:
            logger.error(f"{slug}: face rows not deleted: {e}")
            result.errors.append(f"face_rows: {e}")

        try:
            result.indexed_rows_deleted = self.metadata.delete_indexed_files_for_event(slug)
        except PipelineError as e:
            logger.error(f"{slug}: indexed-file rows not deleted: {e}")
            result.errors.append(f"indexed_rows: {e}")

    def __repr__(self) -> str:
        """String representation."""
        return f"LifecycleReaper(batch_size={self.batch_size})"
