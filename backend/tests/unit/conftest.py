"""Shared fixtures: local object stores, a SQLite metadata store and an in-memory biometric index."""

import io
import itertools
from typing import Dict, List, Optional, Sequence

import pytest
from PIL import Image

from event_media.biometrics import BiometricIndex
from event_media.errors import ObjectNotFound, RemoteError
from event_media.face import BoundingBox, DetectedFace, FaceMatch, FaceRecord
from event_media.storage import LocalObjectStore, MetadataStore


def faces_image(*people: str) -> bytes:
    """Fake image payload understood by FakeBiometricIndex."""
    return ("faces:" + ",".join(people)).encode("utf-8")


class FakeBiometricIndex(BiometricIndex):
    """In-memory biometric index.

    Images are byte strings like b"faces:alice,bob"; each listed person is one
    face. Two faces match when they belong to the same person.
    """

    def __init__(self, collection_prefix: str = "", similarity: float = 99.0):
        super().__init__(collection_prefix=collection_prefix)
        self.similarity = similarity
        self.collections: Dict[str, Dict[str, str]] = {}
        self.partial_people: set = set()
        self.fail_index: set = set()
        self.fail_compare: set = set()
        self.fail_delete_faces = False
        self.fail_create = False
        self.calls: List[str] = []
        self._ids = itertools.count(1)

    @staticmethod
    def people(image: bytes) -> List[str]:
        text = image.decode("utf-8", errors="ignore")
        if not text.startswith("faces:"):
            return []
        return [p for p in text[len("faces:"):].split(",") if p]

    def create_collection(self, collection_id: str) -> bool:
        self.calls.append(f"create_collection:{collection_id}")
        if self.fail_create:
            raise RemoteError("service down", backend="fake", transient=True)
        if collection_id in self.collections:
            return False
        self.collections[collection_id] = {}
        return True

    def delete_collection(self, collection_id: str) -> bool:
        self.calls.append(f"delete_collection:{collection_id}")
        return self.collections.pop(collection_id, None) is not None

    def list_collections(self) -> List[str]:
        return sorted(self.collections)

    def index_faces(
        self,
        collection_id: str,
        image: bytes,
        external_image_id: Optional[str] = None,
        max_faces: int = 10,
        quality_filter: str = "AUTO"
    ) -> List[FaceRecord]:
        self.calls.append(f"index_faces:{external_image_id}")
        if external_image_id in self.fail_index:
            raise RemoteError("index failed", backend="fake", transient=True)
        if collection_id not in self.collections:
            raise ObjectNotFound(f"{collection_id} missing", backend="fake")

        records = []
        for i, person in enumerate(self.people(image)[:max_faces]):
            face_id = f"face-{next(self._ids)}"
            self.collections[collection_id][face_id] = person
            bbox = None if person in self.partial_people else BoundingBox(0.1 * i, 0.1, 0.2, 0.3)
            records.append(FaceRecord(face_id=face_id, bbox=bbox, confidence=99.5,
                                      external_image_id=external_image_id))
        return records

    def delete_faces(self, collection_id: str, face_ids: Sequence[str]) -> int:
        self.calls.append(f"delete_faces:{len(face_ids)}")
        if self.fail_delete_faces:
            raise RemoteError("delete failed", backend="fake", transient=True)
        faces = self.collections.get(collection_id, {})
        return sum(1 for face_id in face_ids if faces.pop(face_id, None) is not None)

    def detect_faces(self, image: bytes) -> List[DetectedFace]:
        return [DetectedFace(bbox=BoundingBox(0.2, 0.2, 0.4, 0.4), confidence=99.0) for _ in self.people(image)]

    def compare_faces(self, source: bytes, target: bytes, threshold: float) -> List[FaceMatch]:
        if target in self.fail_compare:
            raise RemoteError("compare failed", backend="fake", transient=True)
        wanted = self.people(source)[:1]
        matches = [
            FaceMatch(similarity=self.similarity)
            for person in self.people(target)
            if person in wanted and self.similarity >= threshold
        ]
        return matches

    def search_faces_by_image(
        self,
        collection_id: str,
        image: bytes,
        threshold: float,
        max_faces: int = 1000
    ) -> List[FaceMatch]:
        wanted = self.people(image)[:1]
        if self.similarity < threshold:
            return []
        return [
            FaceMatch(similarity=self.similarity, face_id=face_id)
            for face_id, person in self.collections.get(collection_id, {}).items()
            if person in wanted
        ][:max_faces]


def jpeg_bytes(width: int = 1200, height: int = 800, color=(200, 40, 40)) -> bytes:
    """Encode a solid-color JPEG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def storage_root(tmp_path):
    """Root directory for local buckets."""
    return tmp_path / "storage"


@pytest.fixture
def originals(storage_root):
    """Originals bucket."""
    return LocalObjectStore(storage_root, "event-photos")


@pytest.fixture
def previews(storage_root):
    """Previews bucket."""
    return LocalObjectStore(storage_root, "event-previews")


@pytest.fixture
def metadata(tmp_path):
    """SQLite metadata store."""
    return MetadataStore(f"sqlite:///{tmp_path / 'metadata.db'}")


@pytest.fixture
def biometrics():
    """In-memory biometric index."""
    return FakeBiometricIndex()


@pytest.fixture
def make_jpeg():
    """Factory for JPEG bytes."""
    return jpeg_bytes


@pytest.fixture
def make_faces():
    """Factory for fake face payloads."""
    return faces_image
