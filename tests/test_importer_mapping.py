from datetime import date, datetime

import pytest

from casebook.importer.adapters import Cell, CellKind, Row
from casebook.importer.errors import MappingIncompleteError, ValidationError
from casebook.importer.mapping import (
    FieldMapping,
    MappingLoadError,
    apply_mapping,
    coerce_mappings,
    ensure_minimum_mapping,
    get_field_catalogue,
    load_field_catalogue,
    missing_required_fields,
    split_full_name,
)
from casebook.importer.mapping.transforms import apply_transform, is_known_transform, parse_date


def _mappings(*pairs):
    return [FieldMapping(source_column=column, target_field=target) for column, target in pairs]


def test_catalogue_loads_configured_fields(app):
    catalogue = get_field_catalogue()

    assert catalogue.version == 1
    assert catalogue.entity == "client"
    assert "client.firstName" in catalogue.paths
    assert catalogue.get("client.phone").type == "phone"
    assert "contact" in catalogue.ambiguous_columns
    assert get_field_catalogue() is catalogue


def test_catalogue_requires_core_fields(tmp_path):
    path = tmp_path / "fields.yaml"
    path.write_text("version: 1\nfields:\n  - path: client.firstName\n", encoding="utf-8")

    with pytest.raises(MappingLoadError, match="client.lastName"):
        load_field_catalogue(path)


def test_catalogue_rejects_unknown_field_types(tmp_path):
    path = tmp_path / "fields.yaml"
    path.write_text("version: 1\nfields:\n  - path: client.firstName\n    type: colour\n", encoding="utf-8")

    with pytest.raises(MappingLoadError, match="unknown type 'colour'"):
        load_field_catalogue(path)


def test_catalogue_missing_file(tmp_path):
    with pytest.raises(MappingLoadError, match="not found"):
        load_field_catalogue(tmp_path / "absent.yaml")


def test_coerce_mappings_accepts_lists_and_column_objects(app):
    catalogue = get_field_catalogue()

    from_list = coerce_mappings(
        [
            {"sourceColumn": "Name", "targetField": "client.fullName"},
            {"source_column": "Phone", "target_field": "client.phone", "transform": "phone"},
            {"source_column": "Notes", "target_field": ""},
        ],
        catalogue,
        columns=["Name", "Phone", "Notes"],
    )
    from_dict = coerce_mappings({"Name": "client.fullName", "Phone": "client.phone"}, catalogue)

    assert [mapping.target_field for mapping in from_list] == ["client.fullName", "client.phone"]
    assert from_list[1].transform == "phone"
    assert [mapping.source_column for mapping in from_dict] == ["Name", "Phone"]
    assert coerce_mappings(None, catalogue) == ()


@pytest.mark.parametrize(
    "payload, message",
    [
        ([{"source_column": "Name", "target_field": "client.nickname"}], "Unknown target field"),
        ([{"source_column": "Missing", "target_field": "client.fullName"}], "does not exist in this batch"),
        (
            [
                {"source_column": "Name", "target_field": "client.phone"},
                {"source_column": "Phone", "target_field": "client.phone"},
            ],
            "mapped more than once",
        ),
        ([{"source_column": "Name", "target_field": "client.fullName", "transform": "reverse"}], "Unknown transform"),
        ([{"target_field": "client.fullName"}], "has no source column"),
        (["client.fullName"], "must be an object"),
        ("Name=client.fullName", "must be a list"),
    ],
)
def test_coerce_mappings_rejects_bad_payloads(app, payload, message):
    with pytest.raises(ValidationError, match=message):
        coerce_mappings(payload, get_field_catalogue(), columns=["Name", "Phone"])


def test_missing_required_fields_accepts_full_name_or_split_names():
    assert missing_required_fields(_mappings(("Name", "client.fullName"), ("Email", "client.email"))) == []
    assert missing_required_fields(
        _mappings(("First", "client.firstName"), ("Last", "client.lastName"), ("Phone", "client.phone"))
    ) == []
    assert missing_required_fields(_mappings(("First", "client.firstName"))) == ["client.lastName", "client.phone"]


def test_ensure_minimum_mapping_raises_with_missing_paths():
    with pytest.raises(MappingIncompleteError) as excinfo:
        ensure_minimum_mapping(_mappings(("Name", "client.fullName")))

    error = excinfo.value
    assert error.code == "mapping_incomplete"
    assert error.missing == ("client.phone",)
    assert error.to_dict()["details"] == {"missing": ["client.phone"]}


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Alice Smith", ("Alice", "Smith")),
        ("Mary Ann  Lee", ("Mary Ann", "Lee")),
        ("Smith, Alice", ("Alice", "Smith")),
        ("Cher", ("Cher", None)),
        ("   ", (None, None)),
    ],
)
def test_split_full_name(value, expected):
    assert split_full_name(value) == expected


def test_apply_mapping_splits_full_name_and_runs_transforms():
    row = Row.from_values(["Name", "Phone", "DOB"], ["Alice Smith", "1 (555) 201-0001", "05/17/1990"])

    mapped = apply_mapping(
        row,
        [
            FieldMapping("Name", "client.fullName"),
            FieldMapping("Phone", "client.phone", "phone"),
            FieldMapping("DOB", "client.dateOfBirth", "date"),
        ],
    )

    assert mapped.errors == []
    assert mapped.values["client.firstName"] == "Alice"
    assert mapped.values["client.lastName"] == "Smith"
    assert mapped.values["client.phone"] == "5552010001"
    assert mapped.values["client.dateOfBirth"] == "1990-05-17"


def test_apply_mapping_records_transform_failures():
    row = Row.from_values(["DOB"], ["someday"])

    mapped = apply_mapping(row, [FieldMapping("DOB", "client.dateOfBirth", "date")])

    assert "client.dateOfBirth" not in mapped.values
    assert mapped.errors == ["client.dateOfBirth: 'someday' is not a recognised date"]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1990-05-17", date(1990, 5, 17)),
        ("5/17/1990", date(1990, 5, 17)),
        ("17-05-1990", date(1990, 5, 17)),
        ("1990-05-17T08:30:00Z", date(1990, 5, 17)),
    ],
)
def test_parse_date_layouts(text, expected):
    assert parse_date(text) == expected


def test_parse_date_with_explicit_format():
    assert parse_date("17.05.1990", "%d.%m.%Y") == date(1990, 5, 17)


def test_transforms_respect_cell_kinds():
    assert apply_transform(Cell.empty(), "uppercase") is None
    assert apply_transform(Cell(CellKind.DATE, datetime(1990, 5, 17, 9, 0)), "date") == "1990-05-17"
    assert apply_transform(Cell(CellKind.NUMBER, 42.0), None) == "42"
    assert apply_transform(Cell.of("$1,200.50"), "number") == 1200.5
    assert apply_transform(Cell.of("123-45-6789"), "ssn") == "123456789"
    assert apply_transform(Cell.of("Alice"), "lowercase") == "alice"


def test_is_known_transform_ignores_arguments():
    assert is_known_transform("date:%d.%m.%Y")
    assert is_known_transform(" Trim ")
    assert not is_known_transform("reverse")
