"""
Turn CMS spreadsheets/text tables into canonical rule rows.

CMS workbooks put a copyright line in row 1 and the column headers in row 2.
Header text drifts between quarterly releases ("Column 1" vs
"HCPCS/CPT Code 1", multi-line modifier headers, ...), so every canonical
field carries an ordered alias list; the aliases are resolved once per sheet.
Rows that cannot be mapped are dropped quietly - a renamed column must never
abort an ingest.
"""
import csv
import io
import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as du

from .models import AOCRule, MUERule, PTPEdit

logger = logging.getLogger(__name__)

HEADER_ROW = 1  # 0-indexed; row 0 is the copyright notice

# Releases covered: 2023 Q1 through 2025 Q4 (practitioner, hospital, DME files).
HEADER_ALIASES_VERSION = "2025Q4"
HEADER_ALIASES: Dict[str, Dict[str, List[str]]] = {
    "ptp": {
        "column1": ["Column 1", "Column1", "C1", "HCPCS/CPT Code 1", "Column 1 Code"],
        "column2": ["Column 2", "Column2", "C2", "HCPCS/CPT Code 2", "Column 2 Code"],
        "modifier_indicator": [
            "Modifier Indicator 0=not allowed 1= allowed 9= not applicable",
            "Modifier 0=not allowed 1=allowed 9=not applicable",
            "Modifier Indicator",
            "ModifierIndicator",
            "Modifier",
            "MI",
        ],
        "effective_date": ["Effective Date", "EffectiveDate", "Effective"],
    },
    "mue": {
        "code": ["HCPCS/CPT Code", "HCPCS", "HCPCS Code", "HCPCS/CPT", "CPT", "Code"],
        "mue_value": [
            "Practitioner Services MUE Values",
            "Outpatient Hospital Services MUE Values",
            "Facility Outpatient Hospital Services MUE Values",
            "DME Supplier Services MUE Values",
            "Practitioner Services MUE",
            "Outpatient Hospital Services MUE",
            "MUE Values",
            "MUE Value",
            "MUE",
        ],
        "effective_date": ["Effective Date", "EffectiveDate"],
    },
    "aoc": {
        "addon_code": ["Add-On_Code", "Add-on Code", "AddOn", "Addon Code", "Add On Code"],
        "primary_code": ["Primary_Code", "Primary Code", "Primary", "Primary Procedure Code"],
        "effective_date": ["AOC_Edit_EffDT", "EffectiveDate", "Effective Date"],
    },
}

REQUIRED_FIELDS = {
    "ptp": ("column1", "column2"),
    "mue": ("code", "mue_value"),
    "aoc": ("addon_code", "primary_code"),
}


@dataclass
class Table:
    name: str
    headers: List[str]
    rows: List[List[str]]


def clean_cell(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip("\ufeff").strip()


def norm_header(text: str) -> str:
    return " ".join(str(text).split()).lower()


def _to_table(name: str, values: List[List]) -> Optional[Table]:
    values = [[clean_cell(v) for v in row] for row in values]
    if len(values) <= HEADER_ROW + 1:
        return None
    rows = [r for r in values[HEADER_ROW + 1:] if any(r)]
    if not rows:
        return None
    return Table(name=name, headers=values[HEADER_ROW], rows=rows)


def read_tables(name: str, data: bytes) -> List[Table]:
    """All non-empty sheets of a workbook, or the single table of a csv/txt file."""
    lower = name.lower()
    tables = []
    if lower.endswith((".xlsx", ".xls")):
        engine = "openpyxl" if lower.endswith(".xlsx") else None
        frames = pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, dtype=str, engine=engine)
        for sheet_name, df in frames.items():
            table = _to_table(f"{name}:{sheet_name}", df.values.tolist())
            if table:
                tables.append(table)
    elif lower.endswith((".csv", ".txt")):
        lines = data.decode("utf-8", errors="ignore").splitlines()
        header_line = lines[HEADER_ROW] if len(lines) > HEADER_ROW else ""
        delimiter = "\t" if "\t" in header_line else ","
        table = _to_table(name, list(csv.reader(lines, delimiter=delimiter)))
        if table:
            tables.append(table)
    logger.debug(f"{name}: {len(tables)} table(s)")
    return tables


def resolve_columns(headers: Sequence[str], aliases: Dict[str, List[str]]) -> Dict[str, List[int]]:
    """Map each canonical field to header positions, in alias order."""
    positions: Dict[str, int] = {}
    for i, h in enumerate(headers):
        key = norm_header(h)
        if key and key not in positions:
            positions[key] = i
    resolved = {}
    for field_name, names in aliases.items():
        cols = []
        for alias in names:
            pos = positions.get(norm_header(alias))
            if pos is not None and pos not in cols:
                cols.append(pos)
        resolved[field_name] = cols
    return resolved


def field_value(row: Sequence[str], headers: Sequence[str], cols: List[int]) -> Tuple[str, str]:
    """First non-empty value among the alias columns, with the header it sits under."""
    for c in cols:
        if c < len(row) and row[c]:
            return row[c], headers[c]
    return "", ""


def _iter_records(tables: List[Table], kind: str):
    aliases = HEADER_ALIASES[kind]
    required = REQUIRED_FIELDS[kind]
    for table in tables:
        cols = resolve_columns(table.headers, aliases)
        missing = [f for f in required if not cols[f]]
        if missing:
            logger.debug(f"{table.name}: no {kind} columns for {missing}, skipped")
            continue
        kept = 0
        for row in table.rows:
            record = {}
            for field_name in aliases:
                value, header = field_value(row, table.headers, cols[field_name])
                if value and norm_header(value) == norm_header(header):
                    value = None  # repeated header row inside the data region
                record[field_name] = value
            if not all(record[f] for f in required):
                continue
            kept += 1
            yield record
        logger.debug(f"{table.name}: {kept}/{len(table.rows)} {kind} rows kept")


def parse_effective_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return du.parse(str(value)).date().isoformat()
    except (ValueError, OverflowError):
        return None


def parse_units(value: str) -> Optional[int]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0 or not number.is_integer():
        return None
    return int(number)


def normalize_ptp(tables: List[Table], provider_type: Optional[str]) -> List[PTPEdit]:
    edits = []
    for r in _iter_records(tables, "ptp"):
        edits.append(PTPEdit(
            column1=r["column1"].upper(),
            column2=r["column2"].upper(),
            modifier_indicator=r["modifier_indicator"] or None,
            effective_date=parse_effective_date(r["effective_date"]),
            provider_type=provider_type,
        ))
    logger.info(f"Parsed {len(edits)} PTP edits ({provider_type})")
    return edits


def normalize_mue(tables: List[Table], service_type: Optional[str]) -> List[MUERule]:
    rules = []
    for r in _iter_records(tables, "mue"):
        units = parse_units(r["mue_value"])
        if units is None:
            continue
        rules.append(MUERule(
            hcpcs_cpt=r["code"].upper(),
            mue_value=units,
            effective_date=parse_effective_date(r["effective_date"]),
            service_type=service_type,
        ))
    logger.info(f"Parsed {len(rules)} MUE edits ({service_type})")
    return rules


def normalize_aoc(tables: List[Table]) -> List[AOCRule]:
    rules = []
    for r in _iter_records(tables, "aoc"):
        addon, primary = r["addon_code"].upper(), r["primary_code"].upper()
        if addon == primary:
            continue
        rules.append(AOCRule(
            addon_code=addon,
            primary_code=primary,
            effective_date=parse_effective_date(r["effective_date"]),
        ))
    logger.info(f"Parsed {len(rules)} AOC edits")
    return rules
