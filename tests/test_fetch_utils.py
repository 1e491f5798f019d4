from unittest.mock import MagicMock

import pytest
import requests

from ncci_rules.fetch_utils import download_to, file_name_from_url


def _streaming_session(chunks=None, error=None):
    session = MagicMock()
    session.headers = {}
    response = MagicMock()
    if error is not None:
        response.iter_content.side_effect = error
    else:
        response.iter_content.return_value = chunks or []
    session.get.return_value.__enter__.return_value = response
    return session, response


@pytest.mark.parametrize("url,expected", [
    ("https://www.cms.gov/files/zip/medicare-ncci-2025q4-ptp.zip", "medicare-ncci-2025q4-ptp.zip"),
    ("https://www.cms.gov/files/zip/ptp%20edits.zip?download=1", "ptp edits.zip"),
    ("https://www.cms.gov/", "download"),
])
def test_file_name_from_url(url, expected):
    assert file_name_from_url(url) == expected


def test_download_to_streams_chunks_into_out_dir(tmp_path):
    session, _ = _streaming_session([b"PK\x03\x04", b"", b"rest"])
    out_dir = tmp_path / "downloads"

    path = download_to("https://www.cms.gov/files/zip/aoc.zip", out_dir, session=session)

    assert path == out_dir / "aoc.zip"
    assert path.read_bytes() == b"PK\x03\x04rest"
    _, kwargs = session.get.call_args
    assert kwargs["stream"] is True
    assert session.headers["User-Agent"]


def test_download_to_removes_partial_file_on_failure(tmp_path):
    session, _ = _streaming_session(error=requests.ConnectionError("reset by peer"))

    with pytest.raises(requests.ConnectionError):
        download_to("https://www.cms.gov/files/zip/aoc.zip", tmp_path, session=session)
    assert not (tmp_path / "aoc.zip").exists()


def test_download_to_propagates_http_status(tmp_path):
    session, response = _streaming_session()
    response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")

    with pytest.raises(requests.HTTPError):
        download_to("https://www.cms.gov/files/zip/missing.zip", tmp_path, session=session)
    assert list(tmp_path.iterdir()) == []
