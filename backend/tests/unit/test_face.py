"""Tests for face data classes."""

from event_media.face import BoundingBox, FaceRecord, IndexingResult, IndexStatus


class TestBoundingBox:
    """Tests for BoundingBox dataclass."""

    def test_to_dict_uses_service_keys(self):
        """Test converting to the service's format."""
        bbox = BoundingBox(left=0.1, top=0.2, width=0.3, height=0.4)

        assert bbox.to_dict() == {'Width': 0.3, 'Height': 0.4, 'Left': 0.1, 'Top': 0.2}

    def test_from_dict(self):
        """Test parsing the service's format."""
        bbox = BoundingBox.from_dict({'Width': "0.3", 'Height': 0.4, 'Left': 0.1, 'Top': 0.2})

        assert bbox == BoundingBox(left=0.1, top=0.2, width=0.3, height=0.4)

    def test_from_dict_incomplete(self):
        """Test partial or empty boxes parse to None."""
        assert BoundingBox.from_dict(None) is None
        assert BoundingBox.from_dict({}) is None
        assert BoundingBox.from_dict({'Width': 0.3, 'Height': 0.4, 'Left': 0.1}) is None
        assert BoundingBox.from_dict({'Width': "wide", 'Height': 0.4, 'Left': 0.1, 'Top': 0.2}) is None

    def test_carries_only_service_geometry(self):
        """Test the box exposes its four ratios and nothing derived."""
        bbox = BoundingBox(left=0.1, top=0.2, width=0.3, height=0.4)

        for derived in ('right', 'bottom', 'area', 'center', 'overlap_iou'):
            assert not hasattr(bbox, derived)


class TestFaceRecord:
    """Tests for FaceRecord completeness."""

    def test_complete(self):
        """Test a record with id and box is complete."""
        assert FaceRecord(face_id="f1", bbox=BoundingBox(0, 0, 1, 1)).is_complete

    def test_partial(self):
        """Test records missing an id or a box are partial."""
        assert not FaceRecord(face_id=None, bbox=BoundingBox(0, 0, 1, 1)).is_complete
        assert not FaceRecord(face_id="f1", bbox=None).is_complete


class TestIndexingResult:
    """Tests for IndexingResult."""

    def test_to_dict(self):
        """Test dictionary form counts persisted faces."""
        result = IndexingResult(
            photo_path="eventos/carrera/original/a.jpg",
            status=IndexStatus.INDEXED,
            faces_found=3,
            face_ids=["f1", "f2"]
        )

        data = result.to_dict()

        assert data['status'] == "indexed"
        assert data['faces_indexed'] == 2
        assert data['faces_found'] == 3
