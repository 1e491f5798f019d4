"""Locate the latest downloadable NCCI artifact on a CMS landing page."""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from .config import PAGE_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)

ZIP_OR_PDF = re.compile(r"\.(zip|pdf)(?:\?|$)", re.I)
EFFECTIVE_RE = re.compile(r"Effective\s*(\d{1,2})/(\d{1,2})/(\d{4})", re.I)
ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")
QUARTER_RE = re.compile(r"(20\d{2})\s*Quarter\s*([1-4])", re.I)
YEAR_RE = re.compile(r"(20\d{2})")

# approximate end-of-quarter
QUARTER_END = {1: (3, 28), 2: (6, 30), 3: (9, 30), 4: (12, 31)}


@dataclass
class DownloadLink:
    href: str
    text: str
    score: int = 10
    date: Optional[date] = None


def _safe_date(year, month, day) -> Optional[date]:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def effective_score(href: str, text: str) -> Tuple[int, Optional[date]]:
    hay = f"{href} {text}"
    best_score, best_date = 10, None

    m = EFFECTIVE_RE.search(hay)
    if m:
        dt = _safe_date(m.group(3), m.group(1), m.group(2))
        if dt:
            best_score, best_date = 95, dt

    m = ISO_RE.search(hay)
    if m:
        dt = _safe_date(m.group(1), m.group(2), m.group(3))
        if dt and (best_date is None or dt > best_date):
            best_score, best_date = 92, dt

    m = QUARTER_RE.search(hay)
    if m:
        month, day = QUARTER_END[int(m.group(2))]
        dt = date(int(m.group(1)), month, day)
        if best_date is None or dt > best_date:
            best_score, best_date = 90, dt

    # bare year only counts when nothing more precise was found
    m = YEAR_RE.search(hay)
    if m and best_date is None:
        best_score, best_date = max(best_score, 70), date(int(m.group(1)), 12, 31)

    return best_score, best_date


def _matches(hay: str, words: Iterable[str]) -> bool:
    return any(w in hay for w in words)


def find_download_links(html: str, page_url: str, keywords: Iterable[str],
                        partition_keywords: Iterable[str] = ()) -> List[DownloadLink]:
    """Anchors pointing at .zip/.pdf files whose href+text mention the category."""
    keywords = [k.lower() for k in keywords]
    partition_keywords = [k.lower() for k in partition_keywords]
    soup = BeautifulSoup(html, "html.parser")
    links = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        text = a.get_text(" ", strip=True)
        if not ZIP_OR_PDF.search(href):
            continue
        full = urljoin(page_url, href)
        hay = f"{full} {text}".lower()
        if not _matches(hay, keywords):
            continue
        if partition_keywords and not _matches(hay, partition_keywords):
            continue
        links.append(DownloadLink(href=full, text=text))
    return links


def rank_links(links: List[DownloadLink]) -> List[DownloadLink]:
    for link in links:
        link.score, link.date = effective_score(link.href, link.text)
    # score desc, then date desc; undated sorts last
    return sorted(links, key=lambda l: (l.score, l.date or date.min), reverse=True)


def get_latest_download_link(page_url: str, keywords: Iterable[str],
                             partition_keywords: Iterable[str] = (),
                             session: Optional[requests.Session] = None) -> Optional[DownloadLink]:
    http = session or requests.Session()
    http.headers.update({"User-Agent": USER_AGENT})
    logger.info(f"Scanning {page_url}")
    response = http.get(page_url, timeout=PAGE_TIMEOUT)
    response.raise_for_status()

    links = find_download_links(response.text, page_url, keywords, partition_keywords)
    if not links:
        return None
    ranked = rank_links(links)
    for link in ranked[:5]:
        logger.debug(f"  candidate score={link.score} date={link.date} {link.href}")
    return ranked[0]
