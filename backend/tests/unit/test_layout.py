"""Tests for storage layout resolution."""

import pytest

from event_media.errors import InvalidInput
from event_media.layout import (
    Layout,
    base_name,
    cover_path,
    event_namespaces,
    is_image_file,
    layout_of,
    original_candidates,
    original_path,
    resolve,
    thumb_path,
    validate_file_name,
    validate_slug,
)


class TestPaths:
    """Tests for path helpers."""

    def test_original_paths(self):
        """Test both layouts' original paths."""
        assert original_path("carrera", "a.jpg") == "eventos/carrera/original/a.jpg"
        assert original_path("carrera", "a.jpg", Layout.LEGACY) == "carrera/a.jpg"

    def test_thumb_path_strips_extension(self):
        """Test derived path uses the base name and the derived extension."""
        assert thumb_path("carrera", "IMG_001.JPG") == "eventos/carrera/thumb/IMG_001.webp"
        assert thumb_path("carrera", "photo.final.png", "jpeg") == "eventos/carrera/thumb/photo.final.jpeg"

    def test_base_name_flattens_separators(self):
        """Test nested names become flat base names."""
        assert base_name("sub/dir/a.jpg") == "sub_dir_a"
        assert base_name("noext") == "noext"

    def test_cover_path(self):
        """Test cover image path."""
        assert cover_path("carrera") == "eventos/carrera/cover/cover.webp"

    def test_candidates_current_first(self):
        """Test current layout is tried before legacy."""
        assert original_candidates("carrera", "a.jpg") == [
            "eventos/carrera/original/a.jpg",
            "carrera/a.jpg",
        ]

    def test_layout_of(self):
        """Test layout inference from a path."""
        assert layout_of("carrera", "eventos/carrera/original/a.jpg") is Layout.CURRENT
        assert layout_of("carrera", "carrera/a.jpg") is Layout.LEGACY
        assert layout_of("carrera", "other/a.jpg") is None

    def test_is_image_file(self):
        """Test supported extensions, case-insensitive."""
        assert is_image_file("a.JPG")
        assert is_image_file("b.webp")
        assert not is_image_file("notes.txt")


class TestValidation:
    """Tests for slug and file name validation."""

    def test_valid_slug_is_stripped(self):
        """Test whitespace is removed."""
        assert validate_slug("  carrera-2025 ") == "carrera-2025"

    @pytest.mark.parametrize("slug", [None, "", "   "])
    def test_missing_slug(self, slug):
        """Test missing slugs are rejected."""
        with pytest.raises(InvalidInput, match="missing_event_slug"):
            validate_slug(slug)

    @pytest.mark.parametrize("slug", ["../etc", "a/b", "-lead", "a..b", "has space"])
    def test_invalid_slug(self, slug):
        """Test slugs that could escape the namespace are rejected."""
        with pytest.raises(InvalidInput, match="invalid_event_slug"):
            validate_slug(slug)

    def test_file_name_rules(self):
        """Test upload file name validation."""
        assert validate_file_name("a.jpg") == "a.jpg"
        with pytest.raises(InvalidInput, match="missing_file_name"):
            validate_file_name("")
        with pytest.raises(InvalidInput, match="invalid_file_name"):
            validate_file_name("x/a.jpg")
        with pytest.raises(InvalidInput, match="invalid_file_name"):
            validate_file_name(".hidden.jpg")
        with pytest.raises(InvalidInput, match="unsupported_file_type"):
            validate_file_name("a.gif")


class TestNamespaces:
    """Tests for event namespaces."""

    def test_all_namespaces(self):
        """Test both originals layouts and the previews namespace are listed."""
        assert event_namespaces("carrera") == [
            ("originals", "eventos/carrera"),
            ("originals", "carrera"),
            ("previews", "eventos/carrera"),
        ]

    def test_slug_equal_to_root_has_no_legacy_namespace(self):
        """Test the legacy namespace never covers the whole current root."""
        assert ("originals", "eventos") not in event_namespaces("eventos")


class TestResolve:
    """Tests for layout fallback."""

    def test_current_layout_wins(self, originals):
        """Test current layout is used when it holds images."""
        originals.upload("eventos/carrera/original/a.jpg", b"1")
        originals.upload("carrera/old.jpg", b"2")

        resolution = resolve(originals, "carrera")

        assert resolution.layout is Layout.CURRENT
        assert resolution.originals == {"a.jpg": "eventos/carrera/original/a.jpg"}

    def test_falls_back_to_legacy(self, originals):
        """Test legacy layout is used only when current is empty."""
        originals.upload("carrera/b.jpg", b"2")
        originals.upload("carrera/a.jpg", b"1")

        resolution = resolve(originals, "carrera")

        assert resolution.layout is Layout.LEGACY
        assert resolution.paths == ["carrera/a.jpg", "carrera/b.jpg"]

    def test_ignores_non_images_and_folders(self, originals):
        """Test only image files are originals."""
        originals.upload("eventos/carrera/original/notes.txt", b"x")
        originals.upload("eventos/carrera/original/nested/a.jpg", b"x")

        resolution = resolve(originals, "carrera")

        assert resolution.is_empty
        assert resolution.layout is None

    def test_empty_event(self, originals):
        """Test an event without originals resolves to nothing."""
        resolution = resolve(originals, "nothing-here")

        assert resolution.is_empty
        assert resolution.to_dict()["originals"] == 0
