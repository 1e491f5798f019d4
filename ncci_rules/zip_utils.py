import logging
import zipfile
from pathlib import Path
from typing import Iterator, Tuple

logger = logging.getLogger(__name__)

TABLE_EXTENSIONS = (".xlsx", ".xls", ".csv", ".txt")


def is_table_entry(name: str) -> bool:
    return name.lower().endswith(TABLE_EXTENSIONS)


def iter_table_entries(zip_path: Path) -> Iterator[Tuple[str, bytes]]:
    """Yield (name, content) for spreadsheet/text entries, one entry at a time.

    Other entries (PDF readmes, nested folders) are never read.
    """
    with zipfile.ZipFile(zip_path) as zf:
        for info in zf.infolist():
            if info.is_dir() or info.filename.startswith("__MACOSX/") or not is_table_entry(info.filename):
                logger.debug(f" Skipped: {info.filename}")
                continue
            content = zf.read(info)
            logger.info(f" Extracted: {info.filename} ({len(content)} bytes)")
            yield info.filename, content
