"""
Tests for package fetching into the staging folder.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from selfupdate_engine.fetcher import fetch_update, file_name_from_url, staging_path
from selfupdate_engine.source import UpdateDescriptor


def descriptor_for(download_url: str) -> UpdateDescriptor:
    return UpdateDescriptor(version="1.2.0.0", download_url=download_url)


def streaming_response(chunks) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value = response
    response.raise_for_status.return_value = None
    response.iter_content.return_value = iter(chunks)
    return response


class TestStagingPath:
    """Tests for collision-free destination naming."""

    def test_plain_name_when_free(self, tmp_path: Path) -> None:
        assert staging_path(tmp_path, "app.zip") == tmp_path / "app.zip"

    def test_timestamp_prefix_on_collision(self, tmp_path: Path) -> None:
        (tmp_path / "app.zip").write_bytes(b"old")

        with patch("selfupdate_engine.fetcher.timestamp", return_value="20240101120000"):
            destination = staging_path(tmp_path, "app.zip")

        assert destination == tmp_path / "20240101120000_app.zip"

    def test_same_second_collisions_stay_distinct(self, tmp_path: Path) -> None:
        seen = set()

        with patch("selfupdate_engine.fetcher.timestamp", return_value="20240101120000"):
            for _ in range(4):
                destination = staging_path(tmp_path, "app.zip")
                assert destination not in seen
                destination.write_bytes(b"x")
                seen.add(destination)

        assert len(list(tmp_path.iterdir())) == 4


class TestFileNameFromUrl:
    """Tests for file_name_from_url."""

    def test_last_path_segment(self) -> None:
        assert file_name_from_url("https://x/releases/app-1.2.zip?token=abc") == "app-1.2.zip"

    def test_escaped_name(self) -> None:
        assert file_name_from_url("https://x/My%20App.zip") == "My App.zip"

    def test_default_name(self) -> None:
        assert file_name_from_url("https://x/") == "update.zip"


class TestFetchUpdate:
    """Tests for fetch_update."""

    def test_copy_from_local_path(self, tmp_path: Path) -> None:
        package = tmp_path / "share" / "app.zip"
        package.parent.mkdir()
        package.write_bytes(b"PK payload")
        staging = tmp_path / "Updates"

        result = fetch_update(descriptor_for(str(package)), staging)

        assert result == staging / "app.zip"
        assert result.read_bytes() == b"PK payload"

    def test_existing_package_is_not_overwritten(self, tmp_path: Path) -> None:
        package = tmp_path / "app.zip"
        package.write_bytes(b"new")
        staging = tmp_path / "Updates"
        staging.mkdir()
        (staging / "app.zip").write_bytes(b"old")

        result = fetch_update(descriptor_for(str(package)), staging)

        assert result != staging / "app.zip"
        assert result.name.endswith("_app.zip")
        assert (staging / "app.zip").read_bytes() == b"old"
        assert result.read_bytes() == b"new"

    def test_download_from_url(self, tmp_path: Path) -> None:
        response = streaming_response([b"PK", b"", b"data"])
        staging = tmp_path / "Updates"

        with patch("selfupdate_engine.fetcher.requests.get", return_value=response) as get:
            result = fetch_update(descriptor_for("https://x/app.zip"), staging, timeout=10)

        get.assert_called_once_with("https://x/app.zip", stream=True, timeout=10)
        assert result == staging / "app.zip"
        assert result.read_bytes() == b"PKdata"

    def test_failed_download_leaves_no_partial_file(self, tmp_path: Path) -> None:
        def broken_stream(chunk_size):
            yield b"PK"
            raise requests.ConnectionError("reset")

        response = streaming_response([])
        response.iter_content.side_effect = broken_stream
        staging = tmp_path / "Updates"

        with patch("selfupdate_engine.fetcher.requests.get", return_value=response):
            result = fetch_update(descriptor_for("https://x/app.zip"), staging)

        assert result is None
        assert list(staging.iterdir()) == []

    def test_http_error(self, tmp_path: Path) -> None:
        response = streaming_response([])
        response.raise_for_status.side_effect = requests.HTTPError("500")

        with patch("selfupdate_engine.fetcher.requests.get", return_value=response):
            assert fetch_update(descriptor_for("https://x/app.zip"), tmp_path / "Updates") is None

    def test_missing_local_package(self, tmp_path: Path) -> None:
        assert fetch_update(descriptor_for(str(tmp_path / "gone.zip")), tmp_path / "Updates") is None

    def test_directory_is_not_a_package(self, tmp_path: Path) -> None:
        assert fetch_update(descriptor_for(str(tmp_path)), tmp_path / "Updates") is None
