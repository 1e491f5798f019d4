import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import requests

from .config import CHUNK_SIZE, DOWNLOAD_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


def file_name_from_url(url: str) -> str:
    name = unquote(urlparse(url).path.rstrip("/").split("/")[-1])
    return name or "download"


def download_to(url: str, out_dir: Path, session: Optional[requests.Session] = None) -> Path:
    """Stream `url` into `out_dir`, named after the last path segment."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    dest = out_dir / file_name_from_url(url)

    http = session or requests.Session()
    http.headers.update({"User-Agent": USER_AGENT})
    logger.info(f"Downloading: {url}")
    try:
        with http.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (requests.RequestException, OSError):
        dest.unlink(missing_ok=True)
        raise
    logger.info(f" Saved: {dest} ({dest.stat().st_size} bytes)")
    return dest
