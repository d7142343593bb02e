"""Tests for the high-level operations layer."""

from datetime import datetime, timedelta

import pytest

from event_media import _operations as ops
from event_media.config import get_default_config
from event_media.errors import InvalidInput, LockTimeout, Unauthorized
from event_media.progress import DONE, START
from event_media.storage.metadata_db import utcnow


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.setenv("EVENT_MEDIA_DATA_HOME", str(tmp_path / "home"))
    config = get_default_config()
    config["thumbnails"]["base_delay"] = 0
    config["locks"]["timeout"] = 0.05
    config["locks"]["poll_interval"] = 0.01
    return config


@pytest.fixture
def pipeline(config, originals, previews, metadata, biometrics):
    return ops.Pipeline(
        config=config,
        originals=originals,
        previews=previews,
        metadata=metadata,
        biometrics=biometrics
    )


class TestPipeline:
    """Tests for adapter wiring."""

    def test_injected_adapters_are_used(self, pipeline, originals, metadata):
        """Test injected adapters flow into the components."""
        assert pipeline.originals is originals
        assert pipeline.indexer.metadata is metadata
        assert pipeline.thumbnails.base_delay == 0
        assert pipeline.reaper.batch_size == 20

    def test_local_defaults(self, config):
        """Test the local backends are built from config."""
        pipeline = ops.Pipeline(config=config)

        assert pipeline.originals.bucket == "event-photos"
        assert pipeline.previews.bucket == "event-previews"

    def test_authorization(self, pipeline):
        """Test the admin and cron checks read the configured secrets."""
        pipeline.config["security"]["admin_password"] = "s3cret"
        pipeline.config["security"]["cron_secret"] = "tick"

        pipeline.authorize_admin("s3cret")
        pipeline.authorize_cron("Bearer tick")
        with pytest.raises(Unauthorized):
            pipeline.authorize_admin("nope")
        with pytest.raises(Unauthorized):
            pipeline.authorize_cron(None)


class TestEventAdministration:
    """Tests for event CRUD operations."""

    def test_create_with_relative_expiry(self, pipeline):
        """Test expires_in_days sets a future expiry."""
        event = ops.create_event("Carrera 2025", "2025-10-20", expires_in_days=30, pipeline=pipeline)

        assert event["slug"] == "carrera-2025"
        assert datetime.fromisoformat(event["expires_at"]) > utcnow() + timedelta(days=29)

    def test_update_and_list(self, pipeline):
        """Test patching and listing."""
        ops.create_event("Carrera", "2025-10-20", pipeline=pipeline)

        updated = ops.update_event("carrera", location="Lima", pipeline=pipeline)

        assert updated["location"] == "Lima"
        assert [e["slug"] for e in ops.list_events(pipeline=pipeline)] == ["carrera"]

    def test_delete_event_cascade(self, pipeline, originals, make_faces):
        """Test an explicit delete removes everything regardless of expiry."""
        ops.create_event("Carrera", "2025-10-20", pipeline=pipeline)
        originals.upload("eventos/carrera/original/a.jpg", make_faces("ana"))
        ops.index_event("carrera", pipeline=pipeline)

        result = ops.delete_event("carrera", pipeline=pipeline)

        assert result["event_deleted"] is True
        assert result["files_deleted"] == 1
        assert result["face_rows_deleted"] == 1

    def test_delete_event_locked(self, pipeline):
        """Test deletes wait for the event lock."""
        ops.create_event("Carrera", "2025-10-20", pipeline=pipeline)

        with pipeline.lock("carrera"):
            with pytest.raises(LockTimeout):
                ops.delete_event("carrera", pipeline=pipeline)


class TestUploadsAndListing:
    """Tests for signed uploads and photo pages."""

    def test_original_upload_url(self, pipeline):
        """Test originals go to the current layout."""
        signed = ops.create_upload_url("carrera", "a.jpg", pipeline=pipeline)

        assert signed["bucket"] == "event-photos"
        assert signed["path"] == "eventos/carrera/original/a.jpg"

    def test_cover_upload_url(self, pipeline):
        """Test covers go to the previews bucket."""
        signed = ops.create_upload_url("carrera", kind="cover", pipeline=pipeline)

        assert signed["bucket"] == "event-previews"
        assert signed["path"] == "eventos/carrera/cover/cover.webp"

    def test_unknown_upload_kind(self, pipeline):
        """Test an unknown kind is an input error."""
        with pytest.raises(InvalidInput, match="invalid_upload_kind"):
            ops.create_upload_url("carrera", "a.jpg", kind="raw", pipeline=pipeline)

    @pytest.mark.parametrize("file_name", [None, "../a.jpg", "notes.txt", ".hidden.jpg"])
    def test_bad_file_names(self, pipeline, file_name):
        """Test upload names are validated."""
        with pytest.raises(InvalidInput):
            ops.create_upload_url("carrera", file_name, pipeline=pipeline)

    def test_list_photos_pages(self, pipeline, originals):
        """Test limit clamping and next_offset."""
        for i in range(15):
            originals.upload(f"eventos/carrera/original/{i:02d}.jpg", b"x")

        first = ops.list_photos("carrera", limit=5, pipeline=pipeline)
        second = ops.list_photos("carrera", limit=12, offset=12, pipeline=pipeline)

        assert len(first["items"]) == 12
        assert first["next_offset"] == 12
        assert first["items"][0] == {
            "original_path": "eventos/carrera/original/00.jpg",
            "thumb_path": "eventos/carrera/thumb/00.webp",
        }
        assert len(second["items"]) == 3
        assert second["next_offset"] is None

    def test_list_photos_legacy(self, pipeline, originals):
        """Test legacy originals carry no thumbnail path."""
        originals.upload("carrera/a.jpg", b"x")

        page = ops.list_photos("carrera", pipeline=pipeline)

        assert page["layout"] == "legacy"
        assert page["items"] == [{"original_path": "carrera/a.jpg", "thumb_path": None}]


class TestBatchOperations:
    """Tests for indexing, thumbnails, search and reaping through the pipeline."""

    def test_index_stream_holds_lock(self, pipeline, originals, make_faces):
        """Test the lock is held while a stream is being consumed."""
        originals.upload("eventos/carrera/original/a.jpg", make_faces("ana"))
        stream = ops.iter_index_event("carrera", pipeline=pipeline)

        assert next(stream).type == START
        with pytest.raises(LockTimeout):
            ops.repair_thumbnails("carrera", pipeline=pipeline)

        records = list(stream)
        assert records[-1].type == DONE
        ops.repair_thumbnails("carrera", pipeline=pipeline)

    def test_repair_and_generate(self, pipeline, originals, previews, make_jpeg):
        """Test thumbnails through the operations layer."""
        originals.upload("eventos/carrera/original/a.jpg", make_jpeg())
        originals.upload("eventos/carrera/original/b.jpg", make_jpeg())

        assert ops.generate_thumbnail("carrera", "a.jpg", pipeline=pipeline) == {
            "ok": True, "thumb_path": "eventos/carrera/thumb/a.webp"
        }
        stats = ops.repair_thumbnails("carrera", pipeline=pipeline)

        assert stats["total_files"] == 1
        assert stats["files_ok"] == 1
        assert previews.exists("eventos/carrera/thumb/b.webp")

    def test_search(self, pipeline, originals, make_faces):
        """Test selfie search returns the report dictionary."""
        originals.upload("eventos/carrera/original/a.jpg", make_faces("ana"))
        ops.index_event("carrera", pipeline=pipeline)

        report = ops.search_selfie(make_faces("ana"), "carrera", pipeline=pipeline)

        assert report["event_slug"] == "carrera"
        assert [m["photo_path"] for m in report["matches"]] == ["eventos/carrera/original/a.jpg"]

    def test_reap_expired(self, pipeline):
        """Test only expired events are reaped."""
        past = datetime(2025, 1, 1)
        ops.create_event("Old", "2024-12-01", expires_at=past, pipeline=pipeline)
        ops.create_event("New", "2025-01-01", pipeline=pipeline)

        summary = ops.reap_expired(now=datetime(2025, 2, 1), pipeline=pipeline)

        assert summary["deleted_events"] == 1
        assert [e["slug"] for e in ops.list_events(pipeline=pipeline)] == ["new"]

    def test_collections(self, pipeline, biometrics):
        """Test collection management."""
        assert ops.create_collection("carrera", pipeline=pipeline) == {
            "collection_id": "carrera", "created": True
        }
        assert ops.create_collection("carrera", pipeline=pipeline)["created"] is False
        assert ops.list_collections(pipeline=pipeline) == ["carrera"]
