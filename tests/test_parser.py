import pytest
from conftest import build_workbook, template

from planning.errors import StructuralInputError
from planning.workbook import parse_workbook


def test_parses_every_weekday_sheet(workbook_bytes):
    result = parse_workbook(workbook_bytes)
    assert result.sheets == {1: "Lundi", 2: "Mardi", 3: "Mercredi", 4: "Jeudi", 5: "Vendredi"}
    assert not result.malformed
    assert len(result.staff_lines) == 25

    monday = [row for row in result.rows if row.day_of_week == 1]
    assert len(monday) == 7
    piscine = next(row for row in monday if row.cell.label == "Piscine")
    assert (piscine.staff_name, piscine.slot_index, piscine.column) == ("Marc Petit", 2, 3)
    assert piscine.cell.names == ("Inès Leroy", "Arthur Moreau")
    assert piscine.row_number == 3


def test_wednesday_has_no_afternoon_rows(workbook_bytes):
    result = parse_workbook(workbook_bytes)
    wednesday = [row for row in result.rows if row.day_of_week == 3]
    assert {row.slot_index for row in wednesday} <= {1, 2, 3}


def test_english_sheet_names_and_extra_sheets():
    data = build_workbook(
        {
            "Notes": [["anything", "at all"]],
            "Monday": [["Claire Dubois", "Accueil – all"]],
        }
    )
    result = parse_workbook(data)
    assert result.sheets == {1: "Monday"}
    assert result.rows[0].cell.all_children


def test_malformed_cells_are_collected_not_raised():
    data = build_workbook(
        {
            "Lundi": [
                ["Claire Dubois", "Accueil tous", "Piscine – Emma Martin"],
                [None, "Lecture – Emma Martin"],
            ]
        }
    )
    result = parse_workbook(data)
    assert len(result.rows) == 1
    reasons = [(m.row_number, m.column) for m in result.malformed]
    assert reasons == [(2, 2), (3, 1)]


def test_not_a_workbook():
    with pytest.raises(StructuralInputError):
        parse_workbook(b"this is not a spreadsheet")


def test_no_weekday_sheet():
    with pytest.raises(StructuralInputError, match="no weekday sheet"):
        parse_workbook(build_workbook({"Feuil1": [["Claire Dubois", "Accueil – tous"]]}))


def test_duplicate_weekday_sheet():
    sheets = template()
    sheets["Monday"] = sheets["Lundi"]
    with pytest.raises(StructuralInputError, match="Monday"):
        parse_workbook(build_workbook(sheets))
