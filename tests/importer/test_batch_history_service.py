from __future__ import annotations

import pytest

from casebook.importer.errors import NotFoundError
from casebook.importer.pipeline.batch_service import MAX_PAGE_SIZE, BatchFilters
from casebook.importer.pipeline.service import ImportService
from casebook.models import ImportBatchStatus

NAME_PHONE_MAPPINGS = [
    {"source_column": "Name", "target_field": "client.fullName"},
    {"source_column": "Phone", "target_field": "client.phone"},
]


def test_filters_coerce_strings_and_clamp_page_size():
    filters = BatchFilters.coerce(
        page="2", page_size="500", sort="completed_at", statuses="completed, FAILED,completed"
    )

    assert filters.page == 2
    assert filters.page_size == MAX_PAGE_SIZE
    assert filters.sort == "completed_at"
    assert filters.statuses == (ImportBatchStatus.COMPLETED, ImportBatchStatus.FAILED)


def test_filters_defaults():
    filters = BatchFilters.coerce(default_page_size=5)

    assert (filters.page, filters.page_size, filters.sort, filters.statuses) == (1, 5, "-created_at", ())


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"sort": "file_name"}, "Unsupported sort field"),
        ({"statuses": "archived"}, "Unsupported status filter"),
        ({"page": "first"}, "Expected positive integer"),
    ],
)
def test_filters_reject_bad_input(kwargs, message):
    with pytest.raises(ValueError, match=message):
        BatchFilters.coerce(**kwargs)


def test_list_batches_is_tenant_scoped_and_paginated(upload_batch, make_csv, other_organization):
    payload = make_csv("Name,Phone", "Alice Smith,555-201-0001")
    ours = [upload_batch(payload, f"clients-{index}.csv") for index in range(3)]
    upload_batch(payload, "theirs.csv", organization=other_organization)
    service = ImportService()

    first_page = service.list_batches(ours[0].organization_id, BatchFilters.coerce(page=1, page_size=2, sort="-id"))
    second_page = service.list_batches(ours[0].organization_id, BatchFilters.coerce(page=2, page_size=2, sort="-id"))

    assert first_page.total == 3
    assert first_page.total_pages == 2
    assert [item.id for item in first_page.items] == [ours[2].id, ours[1].id]
    assert [item.id for item in second_page.items] == [ours[0].id]
    assert "theirs.csv" not in {item.file_name for item in first_page.items + second_page.items}


def test_list_batches_filters_by_status(upload_batch, make_csv):
    done = upload_batch(make_csv("Name,Phone", "Alice Smith,555-201-0001"))
    upload_batch(make_csv("Name,Phone", "Bea Jones,555-201-0002"))
    service = ImportService()
    service.execute(done.id, done.organization_id, 7, NAME_PHONE_MAPPINGS)

    result = service.list_batches(done.organization_id, BatchFilters.coerce(statuses="completed"))

    assert result.total == 1
    summary = result.items[0].to_dict()
    assert summary["id"] == done.id
    assert summary["status"] == "completed"
    assert summary["rollback_available"] is True
    assert summary["counts"] == {"created": 1, "updated": 0, "skipped": 0, "invalid": 0, "failed": 0}
    assert summary["uploaded_by_user_id"] == 7


def test_empty_history(test_organization):
    result = ImportService().list_batches(test_organization.id, BatchFilters())

    assert result.to_dict() == {"items": [], "total": 0, "page": 1, "page_size": 20, "total_pages": 0}


def test_batch_detail_includes_records_and_parameters(name_phone_batch):
    batch, existing = name_phone_batch
    service = ImportService()
    service.execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)

    detail = service.batch_detail(batch.id, batch.organization_id, record_limit=2)

    assert detail["status"] == "completed"
    assert detail["detected_columns"] == ["Name", "Phone"]
    assert detail["field_mappings"][0]["target_field"] == "client.fullName"
    assert detail["duplicate_settings"]["certain_action"] == "update"
    assert detail["record_status_counts"] == {"applied": 3}
    assert detail["records_truncated"] is True
    assert len(detail["records"]) == 2
    second = detail["records"][1]
    assert second["source"] == {"Name": "Bea Jones", "Phone": "555.201.0002"}
    assert second["action"] == "update"
    assert second["duplicate_verdict"] == "certain"
    assert second["updated_client_id"] == existing.id
    assert detail["rollback_summary"] is None


def test_batch_detail_defaults_record_limit_from_config(app, name_phone_batch, monkeypatch):
    batch, _ = name_phone_batch
    monkeypatch.setitem(app.config, "IMPORTER_DETAIL_RECORD_LIMIT", 1)

    detail = ImportService().batch_detail(batch.id, batch.organization_id)

    assert [record["row_number"] for record in detail["records"]] == [1]
    assert detail["record_status_counts"] == {"pending": 3}


def test_batch_detail_hides_other_tenants_batches(name_phone_batch, other_organization):
    batch, _ = name_phone_batch

    with pytest.raises(NotFoundError):
        ImportService().batch_detail(batch.id, other_organization.id)


def test_job_lookup_is_tenant_scoped(name_phone_batch, other_organization):
    batch, _ = name_phone_batch
    service = ImportService()
    handle = service.execute(batch.id, batch.organization_id, 7, NAME_PHONE_MAPPINGS)

    assert service.get_job(handle.job_id, batch.organization_id).batch_id == batch.id
    with pytest.raises(NotFoundError):
        service.get_job(handle.job_id, other_organization.id)
    with pytest.raises(NotFoundError):
        service.get_job("missing", batch.organization_id)
