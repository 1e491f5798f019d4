"""Pytest configuration and fixtures."""
import io
import zipfile

import pandas as pd
import pytest

from ncci_rules.models import AOCRule, MUERule, PTPEdit
from ncci_rules.store import SQLiteRuleRepository


@pytest.fixture
def repo(tmp_path):
    """Empty rule store with schema applied."""
    r = SQLiteRuleRepository(tmp_path / "rules.sqlite")
    r.init_schema()
    return r


@pytest.fixture
def seeded_repo(repo):
    """Store with a small, known rule set in every partition."""
    repo.replace_partition("ptp_edits", "practitioner", [
        PTPEdit("27447", "27369", "0", "2025-01-01", "practitioner"),
        PTPEdit("29881", "29880", "1", "2025-01-01", "practitioner"),
        PTPEdit("99213", "36415", "9", "2025-01-01", "practitioner"),
    ])
    repo.replace_partition("ptp_edits", "hospital", [
        PTPEdit("0010U", "87513", "1", "2025-01-01", "hospital"),
    ])
    repo.replace_partition("mue", "practitioner", [
        MUERule("99213", 1, "2025-01-01", "practitioner"),
        MUERule("36415", 2, "2025-01-01", "practitioner"),
    ])
    repo.replace_partition("mue", "dme", [
        MUERule("J0139", 160, "2025-01-01", "dme"),
        MUERule("36415", 1, "2025-01-01", "dme"),
    ])
    repo.replace_partition("aoc", None, [
        AOCRule("22552", "22551", "2025-01-01"),
        AOCRule("22552", "22554", "2025-01-01"),
        AOCRule("0054T", "27447", "2025-01-01"),
    ])
    return repo


@pytest.fixture
def make_xlsx():
    """Build workbook bytes from {sheet: rows}; rows[0] is the copyright line, rows[1] the header."""
    def _make(sheets):
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            for name, rows in sheets.items():
                pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
        return buf.getvalue()
    return _make


@pytest.fixture
def make_zip(tmp_path):
    """Write {entry name: bytes} into a zip archive and return its path."""
    def _make(entries, name="edits.zip"):
        path = tmp_path / name
        with zipfile.ZipFile(path, "w") as zf:
            for entry, content in entries.items():
                zf.writestr(entry, content)
        return path
    return _make
