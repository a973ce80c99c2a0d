from __future__ import annotations

import pytest

from casebook.importer.adapters import Row
from casebook.importer.errors import MappingIncompleteError, NotFoundError, ParseError, ValidationError
from casebook.importer.mapping import FieldMapping
from casebook.importer.pipeline.duplicates import detect_duplicates
from casebook.importer.pipeline.service import ImportService
from casebook.models import (
    Client,
    DuplicateVerdict,
    ImportBatch,
    ImportBatchStatus,
    ImportRecord,
    ImportRecordStatus,
    db,
)

NAME_PHONE_MAPPINGS = [
    {"source_column": "Name", "target_field": "client.fullName"},
    {"source_column": "Phone", "target_field": "client.phone"},
]


def _record_statuses(batch_id):
    return [
        record.status
        for record in ImportRecord.query.filter_by(batch_id=batch_id).order_by(ImportRecord.row_number).all()
    ]


def test_upload_persists_batch_and_one_record_per_row(test_organization, make_csv):
    payload = make_csv(
        "First Name,Last Name,Mobile",
        "Alice,Smith,555-201-0001",
        "Bea,Jones,555-201-0002",
    )

    result = ImportService().upload(test_organization.id, 11, "../intake/Clients March.csv", payload)

    batch = db.session.get(ImportBatch, result.batch_id)
    assert result.file_name == "intake_Clients_March.csv"
    assert result.file_format == "csv"
    assert result.total_rows == 2
    assert result.columns == ["First Name", "Last Name", "Mobile"]
    assert result.preview_rows[0] == {"First Name": "Alice", "Last Name": "Smith", "Mobile": "555-201-0001"}
    assert {item["target_field"] for item in result.suggested_mappings} == {
        "client.firstName",
        "client.lastName",
        "client.phone",
    }
    assert batch.status is ImportBatchStatus.MAPPING
    assert batch.uploaded_by_user_id == 11
    assert batch.file_size == len(payload)
    assert batch.total_rows == ImportRecord.query.filter_by(batch_id=batch.id).count()
    assert batch.rollback_available_until is None
    assert _record_statuses(batch.id) == [ImportRecordStatus.PENDING, ImportRecordStatus.PENDING]
    assert [record.row_number for record in batch.records] == [1, 2]


def test_upload_preview_rows_are_bounded(app, test_organization, make_csv, monkeypatch):
    monkeypatch.setitem(app.config, "IMPORTER_PREVIEW_ROWS", 2)
    lines = ["Name,Phone"] + [f"Client {index},555-201-{index:04d}" for index in range(5)]

    result = ImportService().upload(test_organization.id, None, "clients.csv", make_csv(*lines))

    assert result.total_rows == 5
    assert len(result.preview_rows) == 2
    assert result.to_dict()["warnings"] == []


def test_upload_rejects_unknown_or_inactive_tenants(test_organization_inactive, make_csv):
    payload = make_csv("Name,Phone", "Alice Smith,555-201-0001")

    with pytest.raises(NotFoundError):
        ImportService().upload(test_organization_inactive.id, None, "clients.csv", payload)
    with pytest.raises(NotFoundError):
        ImportService().upload(None, None, "clients.csv", payload)


def test_upload_surfaces_parse_errors_without_creating_a_batch(test_organization):
    with pytest.raises(ParseError, match="Unsupported file type"):
        ImportService().upload(test_organization.id, None, "clients.pdf", b"%PDF-1.7")

    assert ImportRecord.query.count() == 0


def test_preview_reports_verdicts_and_default_actions(name_phone_batch):
    batch, existing = name_phone_batch

    report = ImportService().preview(batch.id, batch.organization_id, NAME_PHONE_MAPPINGS)

    rows = report.to_dict()["rows"]
    assert [row["verdict"] for row in rows] == ["new", "certain", "new"]
    assert [row["action"] for row in rows] == ["create", "update", "create"]
    assert rows[1]["target_client_id"] == existing.id
    assert rows[1]["matches"][0]["matched_fields"] == ["phone"]
    assert rows[0]["mapped"]["first_name"] == "Alice"
    assert rows[0]["mapped"]["phone_normalized"] == "+15552010001"
    assert report.summary == {
        "new_records": 2,
        "potential_updates": 1,
        "potential_duplicates": 1,
        "validation_errors": 0,
        "skipped": 0,
    }
    assert report.duplicates["by_verdict"]["certain"] == 1


def test_preview_is_read_only_and_repeatable(name_phone_batch):
    batch, _ = name_phone_batch
    clients_before = Client.query.count()
    service = ImportService()

    first = service.preview(batch.id, batch.organization_id, NAME_PHONE_MAPPINGS).to_dict()
    second = service.preview(batch.id, batch.organization_id, NAME_PHONE_MAPPINGS).to_dict()

    assert first["rows"] == second["rows"]
    assert Client.query.count() == clients_before
    assert set(_record_statuses(batch.id)) == {ImportRecordStatus.PENDING}
    db.session.refresh(batch)
    assert batch.status is ImportBatchStatus.READY
    assert batch.field_mappings[0] == {"source_column": "Name", "target_field": "client.fullName", "transform": None}


def test_preview_applies_resolutions_and_policy(name_phone_batch):
    batch, _ = name_phone_batch

    report = ImportService().preview(
        batch.id,
        batch.organization_id,
        NAME_PHONE_MAPPINGS,
        {"certain_action": "skip"},
        {"3": "skip"},
    )

    rows = report.to_dict()["rows"]
    assert [row["action"] for row in rows] == ["create", "skip", "skip"]
    assert rows[2]["overridden"] is True
    assert report.summary["skipped"] == 2


def test_preview_sees_earlier_rows_of_the_same_batch(upload_batch, make_csv):
    batch = upload_batch(
        make_csv(
            "Name,Phone",
            "Alice Smith,555-201-0001",
            "Bea Jones,555-201-0002",
            "Alice Smyth,(555) 201-0001",
        )
    )

    report = ImportService().preview(batch.id, batch.organization_id, NAME_PHONE_MAPPINGS)

    third = report.to_dict()["rows"][2]
    assert third["verdict"] == "certain"
    assert third["action"] == "update"
    assert third["target_client_id"] is None
    assert third["target_row"] == 1


def test_preview_marks_invalid_rows(upload_batch, make_csv):
    batch = upload_batch(
        make_csv(
            "Name,Phone,Email",
            "Alice Smith,555-201-0001,",
            "Bea,,",
            "Carl Diaz,12,",
            "Dee Long,,not-an-email",
        )
    )

    report = ImportService().preview(
        batch.id,
        batch.organization_id,
        NAME_PHONE_MAPPINGS + [{"source_column": "Email", "target_field": "client.email"}],
    )

    rows = report.to_dict()["rows"]
    assert rows[0]["valid"] is True
    assert rows[1]["errors"] == ["client.lastName is required", "client.phone or client.email is required"]
    assert rows[2]["errors"] == ["client.phone: '12' is not a valid phone number"]
    assert rows[3]["errors"][0].startswith("client.email: 'not-an-email' is not a valid email address")
    assert rows[1]["verdict"] is None
    assert report.summary["validation_errors"] == 3


def test_preview_limit_truncates_rows_but_not_summary(name_phone_batch):
    batch, _ = name_phone_batch

    report = ImportService().preview(batch.id, batch.organization_id, NAME_PHONE_MAPPINGS, limit=1)

    assert len(report.rows) == 1
    assert report.truncated is True
    assert report.summary["new_records"] == 2


def test_preview_requires_minimum_mapping(name_phone_batch):
    batch, _ = name_phone_batch

    with pytest.raises(MappingIncompleteError) as excinfo:
        ImportService().preview(batch.id, batch.organization_id, [NAME_PHONE_MAPPINGS[0]])

    assert excinfo.value.missing == ("client.phone",)
    db.session.refresh(batch)
    assert batch.status is ImportBatchStatus.MAPPING
    assert batch.field_mappings is None


def test_preview_rejects_columns_outside_the_batch(name_phone_batch):
    batch, _ = name_phone_batch

    with pytest.raises(ValidationError, match="does not exist in this batch"):
        ImportService().preview(
            batch.id,
            batch.organization_id,
            NAME_PHONE_MAPPINGS + [{"source_column": "Email", "target_field": "client.email"}],
        )


def test_preview_hides_other_tenants_batches(name_phone_batch, other_organization):
    batch, _ = name_phone_batch

    with pytest.raises(NotFoundError, match=f"Import batch {batch.id} not found"):
        ImportService().preview(batch.id, other_organization.id, NAME_PHONE_MAPPINGS)


def test_detect_duplicates_against_live_clients(test_organization, client_factory, scorer_factory):
    client_factory("Jonathan", "Reyes", phone="555-777-0000", zip_code="64101")
    scorer = scorer_factory({("Jon Reyes", "Jonathan Reyes"): 0.93})
    columns = ["First", "Last", "Phone", "Zip"]
    rows = [
        (1, Row.from_values(columns, ["Jon", "Reyes", "555-201-0001", "64101"])),
        (2, Row.from_values(columns, ["Mia", "Park", "555-777-0000", "10001"])),
        (3, Row.from_values(columns, ["Zoe", "Kim", "555-201-0003", "73301"])),
    ]
    mappings = [
        FieldMapping("First", "client.firstName"),
        FieldMapping("Last", "client.lastName"),
        FieldMapping("Phone", "client.phone"),
        FieldMapping("Zip", "client.address.zip"),
    ]

    verdicts = detect_duplicates(test_organization.id, rows, mappings, scorer=scorer)

    assert [verdict.verdict for verdict in verdicts] == [
        DuplicateVerdict.PROBABLE,
        DuplicateVerdict.CERTAIN,
        DuplicateVerdict.NEW,
    ]
    assert verdicts[0].score == pytest.approx(0.93)
    assert verdicts[0].best.matched_fields == ("name", "zip")
