"""Face data classes for the event media pipeline.

This module defines the core data structures for representing faces,
indexing outcomes, and identity-search matches throughout the system.
Bounding boxes use the biometric service's convention: ratios of the image
width/height in the range 0-1.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


@dataclass
class BoundingBox:
    """Bounding box for a detected face, as ratios of the image size.

    Attributes:
        left: Left edge (0-1)
        top: Top edge (0-1)
        width: Box width (0-1)
        height: Box height (0-1)
    """
    left: float
    top: float
    width: float
    height: float

    def to_dict(self) -> Dict[str, float]:
        """Convert to the service's dictionary format.

        Returns:
            Dictionary with Width, Height, Left, Top keys
        """
        return {
            'Width': self.width,
            'Height': self.height,
            'Left': self.left,
            'Top': self.top
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['BoundingBox']:
        """Create BoundingBox from the service's dictionary format.

        Args:
            data: Dictionary with Width, Height, Left, Top keys

        Returns:
            BoundingBox instance, or None if any coordinate is missing
        """
        if not data:
            return None
        try:
            return cls(
                left=float(data['Left']),
                top=float(data['Top']),
                width=float(data['Width']),
                height=float(data['Height'])
            )
        except (KeyError, TypeError, ValueError):
            return None

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"BoundingBox(left={self.left:.3f}, top={self.top:.3f}, "
            f"width={self.width:.3f}, height={self.height:.3f})"
        )


@dataclass
class DetectedFace:
    """A face found by detection (not stored in any collection).

    Attributes:
        bbox: Bounding box of the face
        confidence: Detection confidence (0-100)
    """
    bbox: BoundingBox
    confidence: float = 0.0


@dataclass
class FaceRecord:
    """A face stored in a biometric collection by an indexing call.

    face_id and bbox are optional because the service may return partial
    records; only complete records are persisted.

    Attributes:
        face_id: Identifier issued by the biometric service
        bbox: Bounding box within the source image
        confidence: Detection confidence (0-100)
        external_image_id: Image reference attached to the face
    """
    face_id: Optional[str]
    bbox: Optional[BoundingBox]
    confidence: float = 0.0
    external_image_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """True when the record has both an identifier and a bounding box."""
        return bool(self.face_id) and self.bbox is not None


@dataclass
class FaceMatch:
    """A face-to-face comparison result.

    Attributes:
        similarity: Similarity score (0-100)
        bbox: Bounding box of the matched face in the target (if known)
        face_id: Matched stored face (collection searches only)
    """
    similarity: float
    bbox: Optional[BoundingBox] = None
    face_id: Optional[str] = None


class IndexStatus(str, Enum):
    """Outcome of indexing one photo."""
    INDEXED = "indexed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class IndexingResult:
    """Result from indexing one photo.

    Attributes:
        photo_path: Object path of the original
        status: Indexed, skipped (already indexed) or failed
        faces_found: Number of face records the service returned
        face_ids: Face IDs persisted for this photo
        errors: List of error messages (if any)
    """
    photo_path: str
    status: IndexStatus = IndexStatus.FAILED
    faces_found: int = 0
    face_ids: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def faces_indexed(self) -> int:
        """Number of faces persisted."""
        return len(self.face_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'photo_path': self.photo_path,
            'status': self.status.value,
            'faces_found': self.faces_found,
            'faces_indexed': self.faces_indexed,
            'face_ids': self.face_ids,
            'errors': self.errors,
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"IndexingResult({self.status.value} {self.photo_path}, "
            f"{self.faces_indexed}/{self.faces_found} faces, {len(self.errors)} errors)"
        )


@dataclass
class IndexingStats:
    """Statistics from indexing an event.

    Attributes:
        total_photos: Originals found for the event
        indexed: Photos newly indexed in this run
        skipped: Photos already represented by face rows
        failed: Photos whose indexing failed or returned no faces
        faces_indexed: Face rows written in this run
        failed_files: Paths of failed photos
        errors: List of error messages
        layout: Layout the originals were resolved from
        processing_time: Total processing time in seconds
    """
    total_photos: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    faces_indexed: int = 0
    failed_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    layout: Optional[str] = None
    processing_time: float = 0.0

    @property
    def done(self) -> int:
        """Photos attempted so far."""
        return self.indexed + self.skipped + self.failed

    def add(self, result: IndexingResult):
        """Fold one photo result into the totals."""
        if result.status is IndexStatus.INDEXED:
            self.indexed += 1
            self.faces_indexed += result.faces_indexed
        elif result.status is IndexStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failed_files.append(result.photo_path)
            self.errors.extend(f"{result.photo_path}: {e}" for e in result.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'total_photos': self.total_photos,
            'indexed': self.indexed,
            'skipped': self.skipped,
            'failed': self.failed,
            'faces_indexed': self.faces_indexed,
            'failed_files': self.failed_files,
            'layout': self.layout,
            'processing_time': self.processing_time,
            'errors_count': len(self.errors)
        }

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"IndexingStats(photos={self.total_photos}, indexed={self.indexed}, "
            f"skipped={self.skipped}, failed={self.failed}, faces={self.faces_indexed})"
        )


@dataclass
class PhotoMatch:
    """An original photo estimated to contain the searched person.

    Attributes:
        photo_path: Object path of the original
        similarity: Best similarity score for the photo (0-100)
        face_ids: Stored faces of the photo that matched (if known)
        rank: Rank in search results (1-indexed)
    """
    photo_path: str
    similarity: float
    face_ids: List[str] = field(default_factory=list)
    rank: int = 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            'rank': self.rank,
            'photo_path': self.photo_path,
            'similarity': self.similarity,
            'face_ids': self.face_ids,
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"PhotoMatch(rank={self.rank}, similarity={self.similarity:.1f}, photo={self.photo_path})"
