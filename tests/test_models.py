from datetime import date, datetime, timedelta, timezone

import pytest

from casebook.models import Client, ImportBatch, ImportBatchStatus, Organization, db


@pytest.fixture
def stored_client(test_organization):
    client = Client(
        organization_id=test_organization.id,
        first_name="  Alice ",
        last_name="Smith",
        phone="555-201-0001",
        phone_normalized="+15552010001",
        date_of_birth=date(1980, 4, 2),
    )
    db.session.add(client)
    db.session.commit()
    return client


class TestClientModel:
    def test_names_are_stripped(self, stored_client):
        assert stored_client.first_name == "Alice"
        assert stored_client.full_name == "Alice Smith"

    def test_snapshot_is_json_safe(self, stored_client):
        snapshot = stored_client.snapshot()

        assert snapshot["date_of_birth"] == "1980-04-02"
        assert snapshot["phone_normalized"] == "+15552010001"
        assert snapshot["email"] is None

    def test_restore_snapshot_parses_dates_and_skips_absent_fields(self, stored_client):
        snapshot = stored_client.snapshot()
        stored_client.last_name = "Jones"
        stored_client.date_of_birth = None
        stored_client.city = "Tulsa"
        snapshot.pop("city")

        stored_client.restore_snapshot(snapshot)

        assert stored_client.last_name == "Smith"
        assert stored_client.date_of_birth == date(1980, 4, 2)
        assert stored_client.city == "Tulsa"

    def test_checksum_tracks_edits(self, stored_client):
        before = stored_client.checksum()
        assert stored_client.checksum() == before

        stored_client.email = "alice@example.org"

        assert stored_client.checksum() != before

    def test_soft_delete_hides_client_from_active_query(self, stored_client, test_organization):
        assert Client.active_for_organization(test_organization.id).count() == 1

        stored_client.soft_delete()
        db.session.commit()

        assert stored_client.is_deleted
        assert Client.active_for_organization(test_organization.id).count() == 0
        assert db.session.get(Client, stored_client.id) is not None

    def test_active_query_is_tenant_scoped(self, stored_client, other_organization):
        assert Client.active_for_organization(other_organization.id).count() == 0


class TestOrganizationModel:
    def test_find_active(self, test_organization, test_organization_inactive):
        assert Organization.find_active(test_organization.id) is test_organization
        assert Organization.find_active(test_organization_inactive.id) is None
        assert Organization.find_active(9999) is None

    def test_find_by_slug(self, test_organization):
        assert Organization.find_by_slug("test-organization") is test_organization
        assert Organization.find_by_slug("missing") is None


class TestImportBatchRollbackWindow:
    def _batch(self, organization, status, until):
        batch = ImportBatch(
            organization_id=organization.id,
            file_name="clients.csv",
            file_format="csv",
            status=status,
            rollback_available_until=until,
        )
        db.session.add(batch)
        db.session.commit()
        return batch

    def test_open_window(self, test_organization):
        batch = self._batch(
            test_organization, ImportBatchStatus.COMPLETED, datetime.now(timezone.utc) + timedelta(hours=1)
        )

        assert batch.rollback_available() is True

    def test_naive_deadline_is_treated_as_utc(self, test_organization):
        now = datetime(2030, 1, 1, 12, tzinfo=timezone.utc)
        batch = self._batch(test_organization, ImportBatchStatus.COMPLETED, datetime(2030, 1, 1, 13))

        assert batch.rollback_available(now) is True
        assert batch.rollback_available(now + timedelta(hours=2)) is False

    @pytest.mark.parametrize(
        "status", [ImportBatchStatus.FAILED, ImportBatchStatus.ROLLED_BACK, ImportBatchStatus.PROCESSING]
    )
    def test_only_completed_batches_can_roll_back(self, test_organization, status):
        batch = self._batch(test_organization, status, datetime.now(timezone.utc) + timedelta(hours=1))

        assert batch.rollback_available() is False

    def test_missing_deadline(self, test_organization):
        batch = self._batch(test_organization, ImportBatchStatus.COMPLETED, None)

        assert batch.rollback_available() is False

    def test_spent_claim_closes_the_window(self, test_organization):
        batch = self._batch(
            test_organization, ImportBatchStatus.COMPLETED, datetime.now(timezone.utc) + timedelta(hours=1)
        )
        batch.rollback_executed_at = datetime.now(timezone.utc)
        db.session.commit()

        assert batch.rollback_available() is False
