"""Tests for object store backends."""

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from event_media.errors import InvalidInput, ObjectNotFound, RemoteError
from event_media.storage import LocalObjectStore, S3ObjectStore, make_object_store


class TestLocalObjectStore:
    """Tests for the filesystem backend."""

    def test_upload_download(self, originals):
        """Test a round trip through one object."""
        originals.upload("eventos/e/original/a.jpg", b"data")

        assert originals.download("eventos/e/original/a.jpg") == b"data"
        assert originals.exists("eventos/e/original/a.jpg")
        assert not originals.exists("eventos/e/original/b.jpg")

    def test_download_missing(self, originals):
        """Test missing objects raise ObjectNotFound."""
        with pytest.raises(ObjectNotFound):
            originals.download("nope.jpg")

    def test_no_overwrite(self, originals):
        """Test overwrite=False refuses an existing object."""
        originals.upload("a.jpg", b"1")
        with pytest.raises(RemoteError):
            originals.upload("a.jpg", b"2", overwrite=False)
        originals.upload("a.jpg", b"3")
        assert originals.download("a.jpg") == b"3"

    def test_list_direct_children(self, originals):
        """Test folders come back without content metadata."""
        originals.upload("e/a.jpg", b"1")
        originals.upload("e/sub/b.jpg", b"22")

        entries = {entry.name: entry for entry in originals.list("e")}

        assert set(entries) == {"a.jpg", "sub"}
        assert entries["sub"].is_folder
        assert entries["sub"].metadata is None
        assert entries["a.jpg"].metadata == {"size": 1, "content_type": "image/jpeg"}
        assert entries["a.jpg"].path == "e/a.jpg"

    def test_list_missing_folder(self, originals):
        """Test listing an absent folder yields nothing."""
        assert list(originals.list("ghost")) == []

    def test_walk_descends(self, originals):
        """Test recursive enumeration."""
        originals.upload("e/a.jpg", b"1")
        originals.upload("e/sub/deeper/b.jpg", b"2")

        assert sorted(entry.path for entry in originals.walk("e")) == ["e/a.jpg", "e/sub/deeper/b.jpg"]

    def test_delete_counts_and_is_idempotent(self, originals):
        """Test delete counts only existing objects and prunes empty folders."""
        originals.upload("e/sub/a.jpg", b"1")
        originals.upload("e/b.jpg", b"2")

        assert originals.delete(["e/sub/a.jpg", "e/b.jpg", "e/ghost.jpg"]) == 2
        assert originals.delete(["e/sub/a.jpg"]) == 0
        assert list(originals.list("e")) == []

    def test_path_escape_refused(self, originals):
        """Test paths outside the bucket are rejected."""
        with pytest.raises(InvalidInput):
            originals.download("../event-previews/a.webp")

    def test_download_first(self, originals):
        """Test candidate fallback."""
        originals.upload("legacy/a.jpg", b"old")

        assert originals.download_first(["current/a.jpg", "legacy/a.jpg"]) == ("legacy/a.jpg", b"old")
        with pytest.raises(ObjectNotFound):
            originals.download_first(["x.jpg", "y.jpg"])

    def test_signed_url(self, originals):
        """Test local signed URL shape."""
        signed = originals.create_signed_upload_url("eventos/e/original/a.jpg")

        assert signed["path"] == "eventos/e/original/a.jpg"
        assert signed["signed_url"].startswith("file://")
        assert signed["token"]


class TestMakeObjectStore:
    """Tests for config-driven construction."""

    def test_local_backend(self, tmp_path):
        """Test the default local backend."""
        config = {
            "paths": {"storage_root": str(tmp_path)},
            "storage": {"backend": "local", "originals_bucket": "o", "previews_bucket": "p"},
            "remote": {"timeout": 5},
        }

        store = make_object_store(config, "previews")

        assert isinstance(store, LocalObjectStore)
        assert store.bucket == "p"
        assert (tmp_path / "p").is_dir()


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


class TestS3ObjectStore:
    """Tests for the S3 backend against a stubbed client."""

    def test_list_maps_prefixes_and_contents(self, s3_client):
        """Test folder listing with Delimiter."""
        store = S3ObjectStore("event-photos", client=s3_client, page_size=50)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "list_objects_v2",
                {
                    "CommonPrefixes": [{"Prefix": "eventos/e/original/"}],
                    "Contents": [{"Key": "eventos/e/cover.jpg", "Size": 3}],
                    "IsTruncated": False,
                },
                {"Bucket": "event-photos", "Prefix": "eventos/e/", "Delimiter": "/", "MaxKeys": 50},
            )
            entries = list(store.list("eventos/e"))

        assert entries[0].is_folder and entries[0].path == "eventos/e/original"
        assert entries[1].name == "cover.jpg" and entries[1].size == 3

    def test_download_not_found(self, s3_client):
        """Test NoSuchKey becomes ObjectNotFound."""
        store = S3ObjectStore("event-photos", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
            with pytest.raises(ObjectNotFound):
                store.download("missing.jpg")

    def test_download(self, s3_client):
        """Test body is read."""
        store = S3ObjectStore("event-photos", client=s3_client)
        body = StreamingBody(io.BytesIO(b"abc"), 3)
        with Stubber(s3_client) as stub:
            stub.add_response("get_object", {"Body": body}, {"Bucket": "event-photos", "Key": "a.jpg"})
            assert store.download("a.jpg") == b"abc"

    def test_upload_sets_cache_and_content_type(self, s3_client):
        """Test put parameters for a derived asset."""
        store = S3ObjectStore("event-previews", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "put_object",
                {},
                {
                    "Bucket": "event-previews",
                    "Key": "eventos/e/thumb/a.webp",
                    "Body": b"img",
                    "ContentType": "image/webp",
                    "CacheControl": "max-age=31536000",
                },
            )
            assert store.upload(
                "eventos/e/thumb/a.webp", b"img", content_type="image/webp", cache_control="31536000"
            ) == "eventos/e/thumb/a.webp"

    def test_server_error_is_transient(self, s3_client):
        """Test 5xx errors are flagged transient."""
        store = S3ObjectStore("event-previews", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)
            with pytest.raises(RemoteError) as exc_info:
                store.upload("a.webp", b"x")

        assert exc_info.value.transient
        assert not isinstance(exc_info.value, ObjectNotFound)

    def test_delete_counts(self, s3_client):
        """Test batched delete reports deleted keys."""
        store = S3ObjectStore("event-photos", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "delete_objects",
                {"Deleted": [{"Key": "a.jpg"}, {"Key": "b.jpg"}]},
                {"Bucket": "event-photos", "Delete": ANY},
            )
            assert store.delete(["a.jpg", "b.jpg"]) == 2

    def test_delete_partial_failure(self, s3_client):
        """Test per-key errors surface as a transient RemoteError."""
        store = S3ObjectStore("event-photos", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response(
                "delete_objects",
                {"Deleted": [], "Errors": [{"Key": "a.jpg", "Code": "AccessDenied", "Message": "no"}]},
                {"Bucket": "event-photos", "Delete": ANY},
            )
            with pytest.raises(RemoteError):
                store.delete(["a.jpg"])

    def test_exists(self, s3_client):
        """Test head_object mapping."""
        store = S3ObjectStore("event-photos", client=s3_client)
        with Stubber(s3_client) as stub:
            stub.add_response("head_object", {}, {"Bucket": "event-photos", "Key": "a.jpg"})
            stub.add_client_error("head_object", service_error_code="404", http_status_code=404)
            assert store.exists("a.jpg")
            assert not store.exists("b.jpg")

    def test_presigned_upload(self, s3_client):
        """Test presigned put URL generation (no network call)."""
        store = S3ObjectStore("event-photos", client=s3_client)

        signed = store.create_signed_upload_url("eventos/e/original/a.jpg", expires=60)

        assert signed["path"] == "eventos/e/original/a.jpg"
        assert "eventos/e/original/a.jpg" in signed["signed_url"]
