import pytest
import requests
from unittest.mock import MagicMock, patch
from clipshrink.domain.errors import NetworkError
from clipshrink.infrastructure.fetcher import ArchiveFetcher

URL = "https://example.com/ffmpeg-release-amd64-static.tar.xz"


def fake_response(status_code=200, chunks=(), headers=None, history=()):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.history = list(history)
    response.iter_content.return_value = list(chunks)
    return response


def patch_get(response):
    patcher = patch("clipshrink.infrastructure.fetcher.requests.get")
    mock_get = patcher.start()
    mock_get.return_value.__enter__.return_value = response
    return patcher, mock_get


@pytest.fixture
def destination(tmp_path):
    return tmp_path / "ffmpeg-download.xz"


def test_fetch_writes_chunks_and_reports_progress(destination):
    response = fake_response(chunks=[b"abc", b"", b"defg"], headers={"content-length": "7"})
    patcher, mock_get = patch_get(response)
    progress = []
    try:
        ArchiveFetcher(timeout=30).fetch(URL, destination, on_progress=lambda done, total: progress.append((done, total)))
    finally:
        patcher.stop()

    assert destination.read_bytes() == b"abcdefg"
    assert progress == [(3, 7), (7, 7)]
    _, kwargs = mock_get.call_args
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == (30, 30)
    assert kwargs["allow_redirects"] is True


def test_fetch_without_content_length(destination):
    response = fake_response(chunks=[b"x" * 10])
    patcher, _ = patch_get(response)
    progress = []
    try:
        ArchiveFetcher().fetch(URL, destination, on_progress=lambda done, total: progress.append((done, total)))
    finally:
        patcher.stop()
    assert progress == [(10, None)]


def test_fetch_follows_redirect_chain(destination):
    hop = MagicMock(status_code=302, url=URL, headers={"location": "https://cdn.example.com/ffmpeg.tar.xz"})
    response = fake_response(chunks=[b"data"], history=[hop])
    patcher, mock_get = patch_get(response)
    try:
        ArchiveFetcher().fetch(URL, destination)
    finally:
        patcher.stop()
    assert destination.read_bytes() == b"data"
    assert mock_get.call_count == 1


def test_fetch_non_200_fails(destination):
    response = fake_response(status_code=404)
    patcher, _ = patch_get(response)
    try:
        with pytest.raises(NetworkError, match="404"):
            ArchiveFetcher().fetch(URL, destination)
    finally:
        patcher.stop()
    assert not destination.exists()


def test_fetch_timeout(destination):
    with patch("clipshrink.infrastructure.fetcher.requests.get", side_effect=requests.ConnectTimeout("slow")):
        with pytest.raises(NetworkError, match="timeout"):
            ArchiveFetcher(timeout=30).fetch(URL, destination)


def test_fetch_connection_error(destination):
    with patch("clipshrink.infrastructure.fetcher.requests.get", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(NetworkError):
            ArchiveFetcher().fetch(URL, destination)


def test_fetch_removes_partial_file_on_broken_stream(destination):
    response = fake_response()
    response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("broken")
    patcher, _ = patch_get(response)
    try:
        with pytest.raises(NetworkError):
            ArchiveFetcher().fetch(URL, destination)
    finally:
        patcher.stop()
    assert not destination.exists()
