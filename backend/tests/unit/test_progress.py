"""Tests for progress records."""

import json

import pytest

from event_media.progress import DONE, FILE, ProgressEvent, drain, event, ndjson


class TestProgressEvent:
    """Tests for a single record."""

    def test_flattened_dict(self):
        """Test type and payload share one dictionary."""
        record = event(FILE, name="a.jpg")

        assert record.to_dict() == {"type": "file", "name": "a.jpg"}
        assert record["name"] == "a.jpg"

    def test_json_line(self):
        """Test one newline-terminated JSON object per record."""
        line = event(DONE, indexed=2).to_json()

        assert line.endswith("\n")
        assert json.loads(line) == {"type": "done", "indexed": 2}

    def test_unknown_type(self):
        """Test record types are validated."""
        with pytest.raises(ValueError):
            ProgressEvent(type="bogus")


class TestStreams:
    """Tests for stream helpers."""

    def test_ndjson(self):
        """Test rendering a stream."""
        lines = list(ndjson([event(FILE, name="a"), event(DONE)]))

        assert [json.loads(line)["type"] for line in lines] == ["file", "done"]

    def test_drain(self):
        """Test the final record is returned."""
        assert drain(iter([event(FILE, name="a"), event(DONE, ok=1)]))["ok"] == 1
        assert drain([]) is None
