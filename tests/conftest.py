"""Fixtures for the HTTP API tests: an app wired to local backends."""

import sys
from pathlib import Path
from typing import Dict, List

import pytest

from event_media import _operations as ops
from event_media.biometrics import BiometricIndex
from event_media.config import get_default_config
from event_media.face import BoundingBox, DetectedFace, FaceMatch, FaceRecord
from event_media.storage import LocalObjectStore, MetadataStore

# Ensure frontend package is importable (dev mode without pip install)
_frontend_dir = str(Path(__file__).resolve().parent.parent / "frontend")
if _frontend_dir not in sys.path:
    sys.path.insert(0, _frontend_dir)


class StubIndex(BiometricIndex):
    """Biometric index over b"faces:<name>,<name>" payloads."""

    def __init__(self):
        super().__init__()
        self.collections: Dict[str, Dict[str, str]] = {}

    @staticmethod
    def people(image: bytes) -> List[str]:
        text = image.decode("utf-8", errors="ignore")
        return [p for p in text[len("faces:"):].split(",") if p] if text.startswith("faces:") else []

    def create_collection(self, collection_id):
        created = collection_id not in self.collections
        self.collections.setdefault(collection_id, {})
        return created

    def delete_collection(self, collection_id):
        return self.collections.pop(collection_id, None) is not None

    def list_collections(self):
        return sorted(self.collections)

    def index_faces(self, collection_id, image, external_image_id=None, max_faces=10, quality_filter="AUTO"):
        records = []
        for person in self.people(image):
            face_id = f"{collection_id}-{len(self.collections[collection_id]) + 1}"
            self.collections[collection_id][face_id] = person
            records.append(FaceRecord(face_id=face_id, bbox=BoundingBox(0.1, 0.1, 0.2, 0.2), confidence=99.0))
        return records

    def delete_faces(self, collection_id, face_ids):
        faces = self.collections.get(collection_id, {})
        return sum(1 for face_id in face_ids if faces.pop(face_id, None) is not None)

    def detect_faces(self, image):
        return [DetectedFace(bbox=BoundingBox(0.2, 0.2, 0.4, 0.4), confidence=99.0) for _ in self.people(image)]

    def compare_faces(self, source, target, threshold):
        wanted = self.people(source)[:1]
        return [FaceMatch(similarity=98.0) for p in self.people(target) if p in wanted and threshold <= 98.0]

    def search_faces_by_image(self, collection_id, image, threshold, max_faces=1000):
        wanted = self.people(image)[:1]
        return [
            FaceMatch(similarity=98.0, face_id=face_id)
            for face_id, person in self.collections.get(collection_id, {}).items()
            if person in wanted and threshold <= 98.0
        ]


@pytest.fixture
def pipeline(tmp_path, monkeypatch):
    monkeypatch.setenv("EVENT_MEDIA_DATA_HOME", str(tmp_path / "home"))
    config = get_default_config()
    config["thumbnails"]["base_delay"] = 0
    config["locks"]["timeout"] = 0.05
    config["locks"]["poll_interval"] = 0.01
    config["security"]["admin_password"] = "s3cret"
    config["security"]["cron_secret"] = "tick"
    return ops.Pipeline(
        config=config,
        originals=LocalObjectStore(tmp_path / "storage", "event-photos"),
        previews=LocalObjectStore(tmp_path / "storage", "event-previews"),
        metadata=MetadataStore(f"sqlite:///{tmp_path / 'metadata.db'}"),
        biometrics=StubIndex(),
    )


@pytest.fixture
def client(pipeline):
    # Try installed package first, fall back to dev-mode import
    try:
        from event_media_frontend.app import app
    except ImportError:
        from app import app

    app.config["TESTING"] = True
    app.config["PIPELINE"] = pipeline
    with app.test_client() as client:
        yield client
    app.config.pop("PIPELINE", None)
