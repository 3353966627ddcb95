"""Tests for the external_licenses staging repository."""

from dataclasses import replace

import pytest

from app.db.enums import ProviderStatus
from app.db.models import ExternalLicense
from app.services import external_license_service
from app.services.external_license_service import MUTABLE_COLUMNS, bulk_upsert, dedupe_by_appid
from app.services.license_validator import ExternalLicenseRecord, normalize_license
from app.utils.pagination import PaginationParams


def _records(make_record, *appids, **fields):
    return [normalize_license(make_record(appid, **fields)) for appid in appids]


def test_mutable_columns_cover_every_provider_field():
    for name in ("sms_balance", "monthly_fee", "package", "note", "status", "last_active", "dba"):
        assert name in MUTABLE_COLUMNS
    assert "appid" not in MUTABLE_COLUMNS
    assert "id" not in MUTABLE_COLUMNS


def test_bulk_upsert_inserts_then_updates(db, make_record):
    summary = bulk_upsert(db, _records(make_record, "A1", "A2"))
    db.commit()

    assert (summary.created, summary.updated, summary.failed) == (2, 0, 0)
    assert db.query(ExternalLicense).count() == 2

    summary = bulk_upsert(db, _records(make_record, "A1", "A2"))
    db.commit()

    assert (summary.created, summary.updated, summary.failed) == (0, 2, 0)
    assert db.query(ExternalLicense).count() == 2


def test_bulk_upsert_overwrites_all_mutable_columns(db, make_record):
    bulk_upsert(db, _records(make_record, "A1"))
    db.commit()

    changed = _records(
        make_record,
        "A1",
        smsBalance=0,
        monthlyFee=19.5,
        dba="Renamed Store",
        status=0,
        Package={"print_check": True},
        Note="new note",
        smsSent=300,
    )
    bulk_upsert(db, changed)
    db.commit()
    db.expire_all()

    row = external_license_service.get_by_appid(db, "A1")
    assert row.sms_balance == 0
    assert row.monthly_fee == 19.5
    assert row.dba == "Renamed Store"
    assert row.status == int(ProviderStatus.INACTIVE)
    assert row.package == {"print_check": True}
    assert row.note == "new note"
    assert row.sms_sent == 300


def test_bulk_upsert_collapses_duplicates_to_last(db, make_record):
    records = _records(make_record, "A1") + _records(make_record, "A1", smsBalance=3.25)

    summary = bulk_upsert(db, records)
    db.commit()

    assert summary.created == 1
    assert external_license_service.get_by_appid(db, "A1").sms_balance == 3.25


def test_dedupe_keeps_position_of_last_occurrence(make_record):
    a1, a2 = _records(make_record, "A1", "A2")
    a1_again = replace(a1, sms_balance=1.0)

    result = dedupe_by_appid([a1, a2, a1_again])

    assert [r.appid for r in result] == ["A2", "A1"]
    assert result[1].sms_balance == 1.0


def test_bad_row_degrades_to_per_row(db, make_record):
    good = _records(make_record, "A1", "A3")
    bad = ExternalLicenseRecord(appid="A2", sms_balance=-1.0)

    summary = bulk_upsert(db, [good[0], bad, good[1]])
    db.commit()

    assert summary.created == 2
    assert summary.failed == 1
    assert summary.failed_appids == {"A2"}
    assert summary.errors[0]["appid"] == "A2"
    assert sorted(r.appid for r in db.query(ExternalLicense)) == ["A1", "A3"]


def test_bulk_upsert_splits_batches(db, make_record):
    records = _records(make_record, *[f"A{i}" for i in range(7)])

    summary = bulk_upsert(db, records, batch_size=3)
    db.commit()

    assert summary.created == 7
    assert db.query(ExternalLicense).count() == 7


def test_empty_input_is_a_no_op(db):
    summary = bulk_upsert(db, [])

    assert summary.as_dict() == {"created": 0, "updated": 0, "failed": 0, "errors": []}


def test_list_and_stats(db, make_record):
    bulk_upsert(db, _records(make_record, "A1", "A2"))
    bulk_upsert(db, _records(make_record, "B1", status=0, dba="Closed Salon"))
    db.commit()

    rows, total = external_license_service.list_external_licenses(
        db, PaginationParams(page=1, per_page=2)
    )
    assert total == 3
    assert [r.appid for r in rows] == ["A1", "A2"]

    rows, total = external_license_service.list_external_licenses(
        db, PaginationParams(), q="salon", status=ProviderStatus.INACTIVE
    )
    assert [r.appid for r in rows] == ["B1"]

    rows, _ = external_license_service.list_external_licenses(
        db, PaginationParams(), sort_by="appid", sort_order="desc"
    )
    assert [r.appid for r in rows] == ["B1", "A2", "A1"]

    stats = external_license_service.get_stats(db)
    assert stats["total"] == 3
    assert stats["active"] == 2
    assert stats["inactive"] == 1
    assert stats["failed"] == 0
    assert stats["last_synced_at"] is not None


def test_get_by_appids(db, make_record):
    bulk_upsert(db, _records(make_record, "A1", "A2"))
    db.commit()

    found = external_license_service.get_by_appids(db, ["A2", "missing", None, "A2"])

    assert list(found) == ["A2"]


def test_list_rejects_unknown_sort_field(db):
    with pytest.raises(ValueError, match="Unsupported sort field"):
        external_license_service.list_external_licenses(db, PaginationParams(), sort_by="note")
