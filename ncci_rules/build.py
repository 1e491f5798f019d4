"""
NCCI rule store build: locate -> download -> extract -> normalize -> replace partition.

Usage
-----
python -m ncci_rules.build --verbose
python -m ncci_rules.build --categories ptp-practitioner mue-dme --db data/ncci_rules.sqlite

Meant to be run by a scheduler. Each category is independent: a category
with no download link keeps its previous rows, and a failed download or a
broken archive only skips that category.
"""
import argparse
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import requests

from . import html_utils
from .config import DATASETS, DOWNLOAD_DIR, SQLITE_PATH, Dataset
from .fetch_utils import download_to
from .sheet_utils import HEADER_ALIASES_VERSION, normalize_aoc, normalize_mue, normalize_ptp, read_tables
from .store import SQLiteRuleRepository, RuleRepository
from .zip_utils import iter_table_entries

logger = logging.getLogger(__name__)

TABLE_FOR_KIND = {"ptp": "ptp_edits", "mue": "mue", "aoc": "aoc"}


def ingest_archive(repo: RuleRepository, dataset: Dataset, zip_path: Path) -> int:
    """Replace the dataset's partition with the rows found in `zip_path`."""
    tables = []
    for name, content in iter_table_entries(zip_path):
        try:
            tables.extend(read_tables(name, content))
        except Exception as e:
            # one unreadable entry (corrupt workbook, legacy .xls without xlrd) must not sink the archive
            logger.warning(f"[{dataset.key}] skipping unreadable entry {name}: {e}")
    if not tables:
        raise ValueError(f"no readable tables in {zip_path.name}")

    if dataset.kind == "ptp":
        rows = normalize_ptp(tables, dataset.partition)
    elif dataset.kind == "mue":
        rows = normalize_mue(tables, dataset.partition)
    elif dataset.kind == "aoc":
        rows = normalize_aoc(tables)
    else:
        raise ValueError(f"Unknown dataset kind: {dataset.kind}")
    return repo.replace_partition(TABLE_FOR_KIND[dataset.kind], dataset.partition, rows)


def build_category(repo: RuleRepository, dataset: Dataset, out_dir: Path,
                   session: Optional[requests.Session] = None) -> Optional[Path]:
    try:
        link = html_utils.get_latest_download_link(
            dataset.page_url, dataset.keywords, dataset.partition_keywords, session=session)
        if link is None:
            logger.warning(f"[{dataset.key}] no download link found; keeping current rows")
            return None
        logger.info(f"[{dataset.key}] {link.text or '(no text)'} -> {link.href} (score {link.score}, {link.date})")
        path = download_to(link.href, out_dir, session=session)
        count = ingest_archive(repo, dataset, path)
    except Exception as e:
        logger.error(f"[{dataset.key}] ingestion failed: {e}")
        return None
    logger.info(f"[{dataset.key}] {count} rows loaded from {path.name}")
    return path


def build_latest(categories: Optional[Iterable[str]] = None, verbose: bool = False,
                 repo: Optional[RuleRepository] = None, out_dir: Path = DOWNLOAD_DIR,
                 max_workers: int = 1) -> Dict[str, Path]:
    """Refresh the rule store; returns {category: downloaded artifact} for categories that loaded."""
    keys: List[str] = list(dict.fromkeys(categories or DATASETS))
    unknown = [k for k in keys if k not in DATASETS]
    if unknown:
        raise ValueError(f"Unknown categories: {', '.join(unknown)}")
    if verbose:
        logging.getLogger("ncci_rules").setLevel(logging.DEBUG)

    if repo is None:
        repo = SQLiteRuleRepository(SQLITE_PATH)
        repo.init_schema()
    out_dir = Path(out_dir)
    logger.info(f"Building NCCI rules for {', '.join(keys)} (header aliases {HEADER_ALIASES_VERSION})")

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {k: pool.submit(build_category, repo, DATASETS[k], out_dir) for k in keys}
        downloaded = {k: f.result() for k, f in futures.items()}
    downloaded = {k: p for k, p in downloaded.items() if p is not None}

    if verbose and isinstance(repo, SQLiteRuleRepository):
        logger.info(
            f"PTP rows: {repo.count('ptp_edits')}, MUE rows: {repo.count('mue')}, AOC rows: {repo.count('aoc')}"
        )
    skipped = [k for k in keys if k not in downloaded]
    if skipped:
        logger.warning(f"Not refreshed this run: {', '.join(skipped)}")
    return downloaded


def main():
    ap = argparse.ArgumentParser(description="Download the latest CMS NCCI edit files and load them into SQLite")
    ap.add_argument("--categories", nargs="+", choices=sorted(DATASETS), help="Categories to refresh (default: all)")
    ap.add_argument("--db", default=str(SQLITE_PATH), help="Path to the SQLite rule store")
    ap.add_argument("--out-dir", default=str(DOWNLOAD_DIR), help="Where downloaded archives are kept")
    ap.add_argument("--workers", type=int, default=1, help="Categories processed in parallel")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    repo = SQLiteRuleRepository(Path(args.db))
    repo.init_schema()
    downloaded = build_latest(args.categories, verbose=args.verbose, repo=repo,
                              out_dir=Path(args.out_dir), max_workers=args.workers)
    for key, path in downloaded.items():
        print(f"{key}: {path}")


if __name__ == "__main__":
    main()
