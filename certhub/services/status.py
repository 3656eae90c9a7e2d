"""
Certificate status rules.
Derives compliance status from lifecycle stage and dates, and does the
calendar arithmetic for expiry dates. Everything here is pure.
"""
import calendar
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from ..config import settings


class LifecycleStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    COMPLETED = "completed"
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    CANCELLED = "cancelled"
    RENEWED = "renewed"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    NON_COMPLIANT = "non_compliant"
    UNDER_REVIEW = "under_review"
    PENDING = "pending"


# No transition leaves these
TERMINAL_STATUSES = frozenset({LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED, LifecycleStatus.RENEWED})

# Stages whose status the expiry sweep is allowed to move
SWEEPABLE_STATUSES = frozenset({LifecycleStatus.ACTIVE, LifecycleStatus.EXPIRING_SOON, LifecycleStatus.COMPLETED})

# Training not yet done or called off
UNISSUED_STATUSES = frozenset({LifecycleStatus.DRAFT, LifecycleStatus.PENDING, LifecycleStatus.CANCELLED})

RENEWABLE_STATUSES = frozenset({LifecycleStatus.ACTIVE, LifecycleStatus.EXPIRING_SOON, LifecycleStatus.EXPIRED})

# Certificate still satisfies a requirement
VALID_COMPLIANCE = frozenset({ComplianceStatus.COMPLIANT, ComplianceStatus.EXPIRING_SOON})


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def evaluate(
    issue_date: Optional[date],
    expiry_date: Optional[date],
    warning_days: Optional[int],
    lifecycle_status: LifecycleStatus | str,
    today: date | datetime,
    suspension_start: Optional[date] = None,
    suspension_end: Optional[date] = None,
) -> ComplianceStatus:
    """
    Compute the compliance status of a certificate.

    Rules are applied in order, first match wins:
      1. revoked/cancelled -> non_compliant
      2. suspended and today inside the suspension window -> under_review
      3. draft/pending -> pending
      4. no expiry date -> compliant
      5. expiry before today -> expired
      6. expiry within warning window -> expiring_soon
      7. otherwise compliant

    Args:
        issue_date: Issue date (kept for signature symmetry, not used by the rules)
        expiry_date: Expiry date or None for non-expiring certificates
        warning_days: Days before expiry flagged as expiring (default from settings)
        lifecycle_status: Stored lifecycle stage
        today: Evaluation date; datetimes are truncated to the day
        suspension_start: First day of suspension (None = unbounded)
        suspension_end: Last day of suspension (None = unbounded)

    Returns:
        ComplianceStatus
    """
    status = LifecycleStatus(lifecycle_status)
    today = _as_date(today)
    if warning_days is None:
        warning_days = settings.default_warning_days

    if status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
        return ComplianceStatus.NON_COMPLIANT

    if status == LifecycleStatus.SUSPENDED:
        starts_ok = suspension_start is None or _as_date(suspension_start) <= today
        ends_ok = suspension_end is None or today <= _as_date(suspension_end)
        if starts_ok and ends_ok:
            return ComplianceStatus.UNDER_REVIEW

    if status in (LifecycleStatus.DRAFT, LifecycleStatus.PENDING):
        return ComplianceStatus.PENDING

    if expiry_date is None:
        return ComplianceStatus.COMPLIANT

    expiry = _as_date(expiry_date)
    if expiry < today:
        return ComplianceStatus.EXPIRED
    if expiry <= today + timedelta(days=warning_days):
        return ComplianceStatus.EXPIRING_SOON
    return ComplianceStatus.COMPLIANT


def lifecycle_for(compliance: ComplianceStatus) -> Optional[LifecycleStatus]:
    """Date-driven lifecycle stage matching a compliance status, if any."""
    return {
        ComplianceStatus.COMPLIANT: LifecycleStatus.ACTIVE,
        ComplianceStatus.EXPIRING_SOON: LifecycleStatus.EXPIRING_SOON,
        ComplianceStatus.EXPIRED: LifecycleStatus.EXPIRED,
    }.get(compliance)


def add_months(start: date, months: int) -> date:
    """Calendar month addition; the day is clamped to the end of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def compute_expiry_date(issue_date: date, validity_months: Optional[int]) -> Optional[date]:
    """issue_date + validity_months, or None for non-expiring training."""
    if not validity_months:
        return None
    return add_months(issue_date, validity_months)


def days_until_expiry(expiry_date: Optional[date], today: date | datetime) -> Optional[int]:
    if expiry_date is None:
        return None
    return (_as_date(expiry_date) - _as_date(today)).days


def evaluate_certificate(cert, today: date | datetime, warning_days: Optional[int] = None) -> ComplianceStatus:
    """evaluate() fed from a Certificate row; warning window falls back to its training type."""
    if warning_days is None and getattr(cert, "training_type", None) is not None:
        warning_days = cert.training_type.warning_days
    return evaluate(
        cert.issue_date,
        cert.expiry_date,
        warning_days,
        cert.status,
        today,
        suspension_start=cert.suspension_start,
        suspension_end=cert.suspension_end,
    )


def accreditation_status(accreditation_expiry: Optional[date], today: date | datetime, warning_days: Optional[int] = None) -> ComplianceStatus:
    """Provider accreditation uses the same date rules as certificates."""
    return evaluate(None, accreditation_expiry, warning_days, LifecycleStatus.ACTIVE, today)
