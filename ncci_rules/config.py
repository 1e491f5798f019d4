import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

DATA_DIR = Path(os.environ.get("NCCI_DATA_DIR", "data"))
DOWNLOAD_DIR = Path(os.environ.get("NCCI_DOWNLOAD_DIR", DATA_DIR / "cms_ncci_downloads"))
SQLITE_PATH = Path(os.environ.get("NCCI_DB_PATH", DATA_DIR / "ncci_rules.sqlite"))

# HTTP
USER_AGENT = "NCCI-Validation-Agent/1.0"
PAGE_TIMEOUT = 60
DOWNLOAD_TIMEOUT = 300
CHUNK_SIZE = 1024 * 1024

# CMS landing pages (stable entry points)
CMS_PAGES = {
    "ptp": "https://www.cms.gov/medicare/coding-billing/national-correct-coding-initiative-ncci-edits/medicare-ncci-procedure-procedure-ptp-edits",
    "mue": "https://www.cms.gov/medicare/coding-billing/national-correct-coding-initiative-ncci-edits/medicare-ncci-medically-unlikely-edits",
    "aoc": "https://www.cms.gov/medicare/coding-billing/national-correct-coding-initiative-ncci-edits/medicare-ncci-add-code-edits",
}

KIND_KEYWORDS = {
    "ptp": ("ptp", "procedure-to-procedure", "procedure to procedure", "edit files"),
    "mue": ("mue", "medically unlikely", "medically-unlikely"),
    "aoc": ("add-on", "add on", "addon", "aoc"),
}


@dataclass(frozen=True)
class Dataset:
    key: str
    kind: str                   # ptp | mue | aoc
    partition: Optional[str]    # provider/service type, None for the global AOC partition
    page_url: str
    keywords: Tuple[str, ...]
    partition_keywords: Tuple[str, ...] = ()


DATASETS = {
    d.key: d
    for d in [
        Dataset("ptp-practitioner", "ptp", "practitioner", CMS_PAGES["ptp"], KIND_KEYWORDS["ptp"],
                ("practitioner", "-pra-", "cci-pra", "physician")),
        Dataset("ptp-hospital", "ptp", "hospital", CMS_PAGES["ptp"], KIND_KEYWORDS["ptp"],
                ("hospital", "-oph-", "cci-oph", "outpatient")),
        Dataset("mue-practitioner", "mue", "practitioner", CMS_PAGES["mue"], KIND_KEYWORDS["mue"],
                ("practitioner",)),
        Dataset("mue-hospital", "mue", "hospital", CMS_PAGES["mue"], KIND_KEYWORDS["mue"],
                ("hospital", "outpatient", "facility")),
        Dataset("mue-dme", "mue", "dme", CMS_PAGES["mue"], KIND_KEYWORDS["mue"],
                ("dme", "supplier")),
        Dataset("aoc", "aoc", None, CMS_PAGES["aoc"], KIND_KEYWORDS["aoc"]),
    ]
}
