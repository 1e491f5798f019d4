from ncci_rules.models import AOCRule, MUERule, PTPEdit
from ncci_rules.sheet_utils import (
    field_value,
    normalize_aoc,
    normalize_mue,
    normalize_ptp,
    parse_effective_date,
    parse_units,
    read_tables,
    resolve_columns,
)

COPYRIGHT = "CPT codes, descriptions and other data only are copyright 2025 American Medical Association."

PTP_HEADER = [
    "Column 1", "Column 2", "*=in existence prior to 1996", "Effective Date",
    "Deletion Date *=no data", "Modifier\n0=not allowed\n1=allowed\n9=not applicable", "PTP Edit Rationale",
]


def test_read_tables_uses_second_row_as_header(make_xlsx):
    data = make_xlsx({"Sheet1": [[COPYRIGHT], PTP_HEADER, ["27447", "27369", "", "20250101", "*", "0", "Misuse"]]})

    tables = read_tables("ccipra-f1.xlsx", data)

    assert len(tables) == 1
    assert tables[0].headers[0] == "Column 1"
    assert tables[0].rows[0][:2] == ["27447", "27369"]


def test_read_tables_skips_sheets_without_data(make_xlsx):
    data = make_xlsx({
        "Edits": [[COPYRIGHT], PTP_HEADER, ["27447", "27369", "", "20250101", "*", "0", ""]],
        "Notes": [[COPYRIGHT], PTP_HEADER],
    })

    assert [t.name for t in read_tables("f.xlsx", data)] == ["f.xlsx:Edits"]


def test_read_tables_detects_tab_delimiter():
    data = b"copyright line\nAdd-On_Code\tPrimary_Code\tAOC_Edit_EffDT\n22552\t22551\t20250101\n"

    (table,) = read_tables("aoc.txt", data)

    assert table.headers == ["Add-On_Code", "Primary_Code", "AOC_Edit_EffDT"]
    assert table.rows == [["22552", "22551", "20250101"]]


def test_read_tables_ignores_unknown_extensions():
    assert read_tables("readme.pdf", b"%PDF") == []


def test_normalize_ptp_maps_header_aliases(make_xlsx):
    data = make_xlsx({"Sheet1": [
        [COPYRIGHT],
        PTP_HEADER,
        ["27447", "27369", "", "20250101", "*", "0", "Misuse of column two code"],
        PTP_HEADER,                                      # header repeated mid-sheet
        ["29881", "", "", "20250101", "*", "1", ""],     # no column 2
        ["g0463 ", "99213", "", "20250101", "*", "1", ""],
    ]})

    edits = normalize_ptp(read_tables("f.xlsx", data), "practitioner")

    assert edits == [
        PTPEdit("27447", "27369", "0", "2025-01-01", "practitioner"),
        PTPEdit("G0463", "99213", "1", "2025-01-01", "practitioner"),
    ]


def test_normalize_ptp_accepts_renamed_columns(make_xlsx):
    data = make_xlsx({"Sheet1": [
        [COPYRIGHT],
        ["HCPCS/CPT Code 1", "HCPCS/CPT Code 2", "Modifier Indicator", "Effective Date"],
        ["0010U", "87513", "1", "2024-10-01"],
    ]})

    assert normalize_ptp(read_tables("f.xlsx", data), "hospital") == [
        PTPEdit("0010U", "87513", "1", "2024-10-01", "hospital"),
    ]


def test_normalize_ptp_skips_tables_without_code_columns(make_xlsx):
    data = make_xlsx({"Sheet1": [[COPYRIGHT], ["Code", "Description"], ["99213", "Office visit"]]})

    assert normalize_ptp(read_tables("f.xlsx", data), "practitioner") == []


def test_normalize_mue_drops_invalid_values(make_xlsx):
    data = make_xlsx({"Sheet1": [
        [COPYRIGHT],
        ["HCPCS/CPT Code", "Practitioner Services MUE Values", "MUE Adjudication Indicator", "MUE Rationale"],
        ["99213", "1", "3 Date of Service Edit: Clinical", "Nature of Service/Procedure"],
        ["36415", "3", "", ""],
        ["J0139", "-1", "", ""],
        ["J0140", "abc", "", ""],
        ["J0141", "1.5", "", ""],
        ["J0142", "2.0", "", ""],
    ]})

    rules = normalize_mue(read_tables("f.xlsx", data), "practitioner")

    assert rules == [
        MUERule("99213", 1, None, "practitioner"),
        MUERule("36415", 3, None, "practitioner"),
        MUERule("J0142", 2, None, "practitioner"),
    ]


def test_normalize_mue_dme_header():
    data = b"copyright\nHCPCS/CPT Code,DME Supplier Services MUE Values\nE0114,1\n"

    assert normalize_mue(read_tables("mue_dme.csv", data), "dme") == [MUERule("E0114", 1, None, "dme")]


def test_normalize_aoc_skips_self_references():
    data = (b"copyright\nAdd-On_Code\tPrimary_Code\tAOC_Edit_EffDT\n"
            b"22552\t22551\t20250101\n22552\t22552\t20250101\n0054t\t27447\t\n")

    assert normalize_aoc(read_tables("aoc.txt", data)) == [
        AOCRule("22552", "22551", "2025-01-01"),
        AOCRule("0054T", "27447", None),
    ]


def test_resolve_columns_prefers_earlier_alias():
    headers = ["HCPCS/CPT Code", "MUE", "Practitioner Services MUE Values"]
    cols = resolve_columns(headers, {"mue_value": ["Practitioner Services MUE Values", "MUE"]})

    assert cols == {"mue_value": [2, 1]}
    assert field_value(["99213", "4", "2"], headers, cols["mue_value"]) == ("2", "Practitioner Services MUE Values")
    assert field_value(["99213", "4", ""], headers, cols["mue_value"]) == ("4", "MUE")


def test_parse_units():
    assert parse_units("4") == 4
    assert parse_units("0") == 0
    assert parse_units("") is None
    assert parse_units("nan") is None
    assert parse_units("inf") is None


def test_parse_effective_date():
    assert parse_effective_date("20251001") == "2025-10-01"
    assert parse_effective_date("10/01/2025") == "2025-10-01"
    assert parse_effective_date("*") is None
    assert parse_effective_date("") is None
