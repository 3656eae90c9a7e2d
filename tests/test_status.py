from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from certhub.services.status import (
    ComplianceStatus,
    LifecycleStatus,
    add_months,
    accreditation_status,
    compute_expiry_date,
    days_until_expiry,
    evaluate,
    evaluate_certificate,
    lifecycle_for,
)


ISSUE = date(2024, 1, 1)
EXPIRY = date(2025, 1, 1)


def test_expiry_is_issue_plus_validity():
    assert compute_expiry_date(ISSUE, 12) == EXPIRY


@pytest.mark.parametrize("today, expected", [
    (date(2024, 6, 1), ComplianceStatus.COMPLIANT),
    (date(2024, 12, 15), ComplianceStatus.EXPIRING_SOON),
    (date(2025, 1, 1), ComplianceStatus.EXPIRING_SOON),
    (date(2025, 1, 2), ComplianceStatus.EXPIRED),
])
def test_calendar_drives_active_certificate(today, expected):
    assert evaluate(ISSUE, EXPIRY, 30, "active", today) == expected


def test_warning_window_boundary_is_inclusive():
    assert evaluate(ISSUE, EXPIRY, 30, "active", date(2024, 12, 2)) == ComplianceStatus.EXPIRING_SOON
    assert evaluate(ISSUE, EXPIRY, 30, "active", date(2024, 12, 1)) == ComplianceStatus.COMPLIANT


@pytest.mark.parametrize("status", ["revoked", "cancelled"])
def test_revoked_and_cancelled_are_non_compliant_even_when_in_date(status):
    assert evaluate(ISSUE, EXPIRY, 30, status, date(2024, 6, 1)) == ComplianceStatus.NON_COMPLIANT


def test_revoked_wins_over_expiry():
    assert evaluate(ISSUE, EXPIRY, 30, LifecycleStatus.REVOKED, date(2026, 1, 1)) == ComplianceStatus.NON_COMPLIANT


def test_suspension_window():
    kwargs = dict(suspension_start=date(2024, 5, 1), suspension_end=date(2024, 7, 1))
    assert evaluate(ISSUE, EXPIRY, 30, "suspended", date(2024, 6, 1), **kwargs) == ComplianceStatus.UNDER_REVIEW
    # Outside the window the dates decide
    assert evaluate(ISSUE, EXPIRY, 30, "suspended", date(2024, 8, 1), **kwargs) == ComplianceStatus.COMPLIANT


def test_suspension_without_bounds_is_open_ended():
    assert evaluate(ISSUE, EXPIRY, 30, "suspended", date(2030, 1, 1)) == ComplianceStatus.UNDER_REVIEW


@pytest.mark.parametrize("status", ["draft", "pending"])
def test_unissued_certificates_are_pending(status):
    assert evaluate(ISSUE, date(2020, 1, 1), 30, status, date(2024, 6, 1)) == ComplianceStatus.PENDING


def test_no_expiry_is_always_compliant():
    assert evaluate(ISSUE, None, 30, "active", date(2099, 1, 1)) == ComplianceStatus.COMPLIANT


def test_datetime_today_is_truncated():
    now = datetime(2025, 1, 2, 0, 30, tzinfo=timezone.utc)
    assert evaluate(ISSUE, EXPIRY, 30, "active", now) == ComplianceStatus.EXPIRED


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        evaluate(ISSUE, EXPIRY, 30, "archived", date(2024, 6, 1))


def test_evaluate_is_pure():
    args = (ISSUE, EXPIRY, 30, "active", date(2024, 12, 15))
    assert evaluate(*args) == evaluate(*args)


def test_evaluate_certificate_uses_training_type_warning_days():
    cert = SimpleNamespace(
        issue_date=ISSUE,
        expiry_date=EXPIRY,
        status="active",
        suspension_start=None,
        suspension_end=None,
        training_type=SimpleNamespace(warning_days=60),
    )
    assert evaluate_certificate(cert, date(2024, 11, 15)) == ComplianceStatus.EXPIRING_SOON
    cert.training_type.warning_days = 10
    assert evaluate_certificate(cert, date(2024, 11, 15)) == ComplianceStatus.COMPLIANT


@pytest.mark.parametrize("start, months, expected", [
    (date(2024, 1, 31), 1, date(2024, 2, 29)),
    (date(2023, 1, 31), 1, date(2023, 2, 28)),
    (date(2024, 2, 29), 12, date(2025, 2, 28)),
    (date(2024, 11, 15), 3, date(2025, 2, 15)),
])
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected


def test_zero_validity_never_expires():
    assert compute_expiry_date(ISSUE, 0) is None
    assert compute_expiry_date(ISSUE, None) is None


def test_days_until_expiry():
    assert days_until_expiry(EXPIRY, date(2024, 12, 15)) == 17
    assert days_until_expiry(EXPIRY, date(2025, 1, 3)) == -2
    assert days_until_expiry(None, date(2024, 12, 15)) is None


def test_lifecycle_for_only_maps_date_driven_results():
    assert lifecycle_for(ComplianceStatus.COMPLIANT) == LifecycleStatus.ACTIVE
    assert lifecycle_for(ComplianceStatus.EXPIRED) == LifecycleStatus.EXPIRED
    assert lifecycle_for(ComplianceStatus.UNDER_REVIEW) is None


def test_accreditation_status():
    assert accreditation_status(date(2024, 6, 20), date(2024, 6, 1)) == ComplianceStatus.EXPIRING_SOON
    assert accreditation_status(date(2024, 5, 1), date(2024, 6, 1)) == ComplianceStatus.EXPIRED
