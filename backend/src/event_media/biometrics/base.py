"""Biometric index interface.

One collection per event, named by the event slug (plus an optional
deployment prefix). Implementations must treat "collection already exists"
on create and "not found" on delete as success.
"""

import re
from typing import List, Optional, Sequence

from ..face import DetectedFace, FaceMatch, FaceRecord

_EXTERNAL_ID_UNSAFE = re.compile(r'[^\w.\-:]')

# Face ids accepted by one delete_faces call
DELETE_FACES_CEILING = 1000


def sanitize_external_image_id(value: str) -> str:
    """Make an object path acceptable as an external image id."""
    return _EXTERNAL_ID_UNSAFE.sub('_', value)


class BiometricIndex:
    """Base class for face-collection backends.

    Attributes:
        collection_prefix: Prepended to every event slug to form a collection id
    """

    backend = "biometrics"

    def __init__(self, collection_prefix: str = ""):
        self.collection_prefix = collection_prefix or ""

    def collection_id(self, slug: str) -> str:
        """Collection id used for an event."""
        return f"{self.collection_prefix}{slug}"

    def create_collection(self, collection_id: str) -> bool:
        """Create a collection.

        Returns:
            True if created, False if it already existed
        """
        raise NotImplementedError

    def delete_collection(self, collection_id: str) -> bool:
        """Delete a collection.

        Returns:
            True if deleted, False if it did not exist
        """
        raise NotImplementedError

    def list_collections(self) -> List[str]:
        """List collection ids."""
        raise NotImplementedError

    def index_faces(
        self,
        collection_id: str,
        image: bytes,
        external_image_id: Optional[str] = None,
        max_faces: int = 10,
        quality_filter: str = "AUTO"
    ) -> List[FaceRecord]:
        """Add the faces found in an image to a collection.

        Returns:
            Face records as returned by the service (possibly partial)
        """
        raise NotImplementedError

    def delete_faces(self, collection_id: str, face_ids: Sequence[str]) -> int:
        """Delete faces from a collection.

        Returns:
            Number of faces the service reports as deleted

        Raises:
            InvalidInput: If more than DELETE_FACES_CEILING ids are given
        """
        raise NotImplementedError

    def detect_faces(self, image: bytes) -> List[DetectedFace]:
        """Detect faces without storing them."""
        raise NotImplementedError

    def compare_faces(self, source: bytes, target: bytes, threshold: float) -> List[FaceMatch]:
        """Compare the largest face of source against every face in target.

        Returns:
            Matches with similarity >= threshold
        """
        raise NotImplementedError

    def search_faces_by_image(
        self,
        collection_id: str,
        image: bytes,
        threshold: float,
        max_faces: int = 1000
    ) -> List[FaceMatch]:
        """Search a collection for the largest face of an image.

        Returns:
            Matches (with face_id set) with similarity >= threshold
        """
        raise NotImplementedError

    def ensure_collection(self, collection_id: str) -> str:
        """Create a collection if needed and return its id."""
        self.create_collection(collection_id)
        return collection_id

    def __repr__(self) -> str:
        """String representation."""
        return f"{self.__class__.__name__}(prefix='{self.collection_prefix}')"
