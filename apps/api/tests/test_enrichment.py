"""Tests for read-time sms_balance enrichment."""

from app.db.models import ExternalLicense, License
from app.services import enrichment_service


def _license(db, appid, sms_balance, key=None):
    license = License(key=key or f"KEY-{appid}", appid=appid, sms_balance=sms_balance)
    db.add(license)
    return license


def _staging(db, appid, sms_balance):
    db.add(ExternalLicense(appid=appid, sms_balance=sms_balance))


def test_zero_internal_balance_uses_staging_value(db):
    license = _license(db, "A1", 0)
    _staging(db, "A1", 8.9)
    db.commit()

    [item] = enrichment_service.enrich_licenses(db, [license])

    assert item.sms_balance == 8.9
    assert item.sms_balance_source == "external"
    assert enrichment_service.get_fallback_count() == 1

    db.expire_all()
    assert db.get(License, license.id).sms_balance == 0


def test_non_zero_internal_balance_wins(db):
    license = _license(db, "A1", 5)
    _staging(db, "A1", 8.9)
    db.commit()

    item = enrichment_service.enrich_license(db, license)

    assert item.sms_balance == 5
    assert item.sms_balance_source == "internal"
    assert enrichment_service.get_fallback_count() == 0


def test_internal_only_license_stays_zero(db):
    manual = _license(db, None, 0, key="LIC-MANUAL")
    uncorrelated = _license(db, "A9", 0)
    db.commit()

    items = enrichment_service.enrich_licenses(db, [manual, uncorrelated])

    assert [item.sms_balance for item in items] == [0, 0]
    assert enrichment_service.get_fallback_count() == 0


def test_zero_staging_balance_is_not_a_fallback(db):
    license = _license(db, "A1", 0)
    _staging(db, "A1", 0)
    db.commit()

    item = enrichment_service.enrich_license(db, license)

    assert item.sms_balance == 0
    assert item.sms_balance_source == "internal"
    assert enrichment_service.get_fallback_count() == 0


def test_counter_accumulates_and_resets(db):
    licenses = [_license(db, f"A{i}", 0) for i in range(3)]
    for i in range(3):
        _staging(db, f"A{i}", 1.5)
    db.commit()

    enrichment_service.enrich_licenses(db, licenses)
    enrichment_service.enrich_licenses(db, licenses[:1])
    assert enrichment_service.get_fallback_count() == 4

    enrichment_service.reset_fallback_count()
    assert enrichment_service.get_fallback_count() == 0
