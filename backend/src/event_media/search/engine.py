"""Identity search: find the photos of an event that contain a selfie's person.

This module provides the IdentitySearch class. A selfie is first checked for
a detectable face, then compared against the event's indexed photos, and
every photo scoring at or above the similarity threshold is returned, best
first.

Two strategies:
- compare (default): one pairwise comparison per indexed photo, against the
  photo's original bytes, run concurrently up to a worker limit
- collection: one search of the event's biometric collection, joined with
  the indexed-face rows by face id
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple
import logging
import time

from ..biometrics import BiometricIndex
from ..errors import InvalidInput, ObjectNotFound, PipelineError
from ..face import PhotoMatch
from ..layout import validate_slug
from ..storage import MetadataStore, ObjectStore
from .results import best_per_photo, filter_by_threshold, rank_matches

logger = logging.getLogger(__name__)

STRATEGIES = ("compare", "collection")

# Service ceiling for MaxFaces in a collection search
SEARCH_MAX_FACES_CEILING = 4096


@dataclass
class SearchReport:
    """Outcome of one identity search.

    Attributes:
        slug: Event slug
        strategy: Strategy used
        threshold: Similarity threshold applied
        faces_detected: Faces found in the selfie
        photos_considered: Indexed photos of the event
        photos_failed: Photos whose comparison failed (counted, not raised)
        matches: Every match at or above the threshold, ranked
        search_time: Wall time in seconds
    """
    slug: str
    strategy: str
    threshold: float
    faces_detected: int = 0
    photos_considered: int = 0
    photos_failed: int = 0
    matches: List[PhotoMatch] = field(default_factory=list)
    search_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'event_slug': self.slug,
            'strategy': self.strategy,
            'threshold': self.threshold,
            'faces_detected': self.faces_detected,
            'photos_considered': self.photos_considered,
            'photos_failed': self.photos_failed,
            'total_matches': len(self.matches),
            'matches': [m.to_dict() for m in self.matches],
            'search_time': self.search_time,
        }


class IdentitySearch:
    """Selfie search over an event's indexed faces.

    Usage:
        search = IdentitySearch(
            originals=originals_store,
            metadata=metadata_store,
            biometrics=rekognition_index,
            threshold=90.0,
            max_workers=8
        )

        for match in search.search(selfie_bytes, 'carrera-2025'):
            print(match.photo_path, match.similarity)
    """

    def __init__(
        self,
        originals: ObjectStore,
        metadata: MetadataStore,
        biometrics: BiometricIndex,
        threshold: float = 90.0,
        max_workers: int = 8,
        strategy: str = "compare"
    ):
        """Initialize identity search.

        Args:
            originals: Object store holding original photos
            metadata: Metadata store with indexed faces
            biometrics: Biometric index
            threshold: Minimum similarity (0-100) for a match
            max_workers: Concurrent comparisons against the service
            strategy: 'compare' or 'collection'
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown search strategy: {strategy}")

        self.originals = originals
        self.metadata = metadata
        self.biometrics = biometrics
        self.threshold = threshold
        self.max_workers = max(1, int(max_workers))
        self.strategy = strategy

    def search(
        self,
        selfie: bytes,
        slug: str,
        threshold: Optional[float] = None,
        strategy: Optional[str] = None
    ) -> List[PhotoMatch]:
        """Search an event for photos of the selfie's person.

        Args:
            selfie: Selfie image bytes
            slug: Event slug
            threshold: Override the configured threshold
            strategy: Override the configured strategy

        Returns:
            Matches ranked by similarity (highest first), possibly empty

        Raises:
            InvalidInput: Missing selfie or invalid slug
            RemoteError: If face detection on the selfie fails
        """
        return self.search_report(selfie, slug, threshold=threshold, strategy=strategy).matches

    def search_report(
        self,
        selfie: bytes,
        slug: str,
        threshold: Optional[float] = None,
        strategy: Optional[str] = None
    ) -> SearchReport:
        """Like search(), returning the full SearchReport."""
        slug = validate_slug(slug)
        if not selfie:
            raise InvalidInput("missing_file")

        strategy = strategy or self.strategy
        if strategy not in STRATEGIES:
            raise InvalidInput(f"invalid_strategy: {strategy}")
        threshold = self.threshold if threshold is None else float(threshold)

        start_time = time.time()
        report = SearchReport(slug=slug, strategy=strategy, threshold=threshold)

        faces = self.biometrics.detect_faces(selfie)
        report.faces_detected = len(faces)
        if not faces:
            logger.info(f"No face detected in selfie for {slug}")
            return report

        rows = self.metadata.get_faces_for_event(slug)
        photos: Dict[str, List[str]] = {}
        for row in rows:
            photos.setdefault(row.photo_path, []).append(row.face_id)
        report.photos_considered = len(photos)

        if not photos:
            logger.info(f"No indexed faces for {slug}")
            return report

        if strategy == "collection":
            matches = self._search_collection(selfie, slug, rows, threshold)
        else:
            matches, report.photos_failed = self._compare_photos(selfie, photos, threshold)

        report.matches = rank_matches(filter_by_threshold(matches, threshold))
        report.search_time = time.time() - start_time

        logger.info(
            f"Search in {slug} ({strategy}): {len(report.matches)} matches over "
            f"{report.photos_considered} photos, {report.photos_failed} failed, "
            f"{report.search_time:.2f}s"
        )
        return report

    def _compare_photo(self, selfie: bytes, photo_path: str, threshold: float) -> Optional[float]:
        """Best similarity between the selfie and one photo, None if no match."""
        try:
            target = self.originals.download(photo_path)
        except ObjectNotFound:
            # Row points at a deleted photo; nothing to compare
            logger.debug(f"Indexed photo {photo_path} no longer exists")
            return None

        matches = self.biometrics.compare_faces(selfie, target, threshold)
        if not matches:
            return None
        return max(m.similarity for m in matches)

    def _compare_photos(
        self,
        selfie: bytes,
        photos: Dict[str, List[str]],
        threshold: float
    ) -> Tuple[List[PhotoMatch], int]:
        matches: List[PhotoMatch] = []
        failed = 0

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._compare_photo, selfie, path, threshold): path
                for path in photos
            }
            for future in as_completed(futures):
                path = futures[future]
                try:
                    similarity = future.result()
                except PipelineError as e:
                    logger.warning(f"Comparison against {path} failed: {e}")
                    failed += 1
                    continue
                if similarity is not None:
                    matches.append(PhotoMatch(
                        photo_path=path,
                        similarity=similarity,
                        face_ids=list(photos[path])
                    ))

        return matches, failed

    def _search_collection(self, selfie: bytes, slug: str, rows, threshold: float) -> List[PhotoMatch]:
        face_to_photo = {row.face_id: row.photo_path for row in rows}
        found = self.biometrics.search_faces_by_image(
            self.biometrics.collection_id(slug),
            selfie,
            threshold,
            max_faces=min(SEARCH_MAX_FACES_CEILING, max(len(face_to_photo), 1))
        )
        scored = [
            (face_to_photo[m.face_id], m.similarity, m.face_id)
            for m in found
            if m.face_id in face_to_photo
        ]
        return best_per_photo(scored)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"IdentitySearch(strategy={self.strategy}, threshold={self.threshold}, "
            f"max_workers={self.max_workers})"
        )
