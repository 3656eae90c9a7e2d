"""
Compliance aggregation.

Pure roll-ups over already-loaded certificates: per-status counts, rates,
per-employee / department / training-type compliance, trend and forecast
series. Nothing here touches the database or raises on empty input.
"""
from collections import defaultdict
from datetime import date, timedelta
from typing import Optional, List, Dict, Any, Iterable

from .status import (
    ComplianceStatus,
    LifecycleStatus,
    UNISSUED_STATUSES,
    VALID_COMPLIANCE,
    add_months,
    days_until_expiry,
    evaluate_certificate,
)


EXPIRY_PERIODS = (7, 30, 60, 90)


def current_certificates(certs: Iterable, include_superseded: bool = False) -> list:
    """Drop certificates that were replaced by a renewal."""
    if include_superseded:
        return list(certs)
    return [c for c in certs if c.status != LifecycleStatus.RENEWED]


def _compliance(cert, today: Optional[date]) -> ComplianceStatus:
    """Fresh evaluation when a date is given, stored value otherwise."""
    if today is not None:
        return evaluate_certificate(cert, today)
    return ComplianceStatus(cert.compliance_status)


def _is_valid(status: ComplianceStatus) -> bool:
    return ComplianceStatus(status) in VALID_COMPLIANCE


def status_counts(certs: Iterable, today: Optional[date] = None) -> Dict[str, int]:
    """Count per compliance bucket. Every bucket is present, zero when empty."""
    counts = {s.value: 0 for s in ComplianceStatus}
    total = 0
    for cert in certs:
        counts[_compliance(cert, today).value] += 1
        total += 1
    counts["total"] = total
    return counts


def compliance_rate(compliant: int, expiring: int, expired: int) -> float:
    """compliant / (compliant + expiring + expired) as a percentage, 1 decimal; 0 when nothing counts."""
    denominator = compliant + expiring + expired
    if denominator <= 0:
        return 0.0
    return round(compliant / denominator * 100, 1)


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


def summarize(certs: Iterable, today: Optional[date] = None) -> Dict[str, Any]:
    counts = status_counts(certs, today)
    return {
        **counts,
        "compliance_rate": compliance_rate(
            counts[ComplianceStatus.COMPLIANT.value],
            counts[ComplianceStatus.EXPIRING_SOON.value],
            counts[ComplianceStatus.EXPIRED.value],
        ),
    }


def compliance_grade(rate: float) -> str:
    if rate >= 95: return "A+"
    if rate >= 90: return "A"
    if rate >= 85: return "A-"
    if rate >= 80: return "B+"
    if rate >= 75: return "B"
    if rate >= 70: return "B-"
    if rate >= 65: return "C+"
    if rate >= 60: return "C"
    if rate >= 55: return "C-"
    if rate >= 50: return "D"
    return "F"


def compliance_label(rate: float) -> str:
    if rate >= 90: return "excellent"
    if rate >= 75: return "good"
    if rate >= 60: return "fair"
    if rate >= 40: return "poor"
    return "critical"


def risk_level(rate: float, is_mandatory: bool = True) -> str:
    """Optional training is never a risk; mandatory training is graded by rate."""
    if not is_mandatory:
        return "low"
    if rate >= 90:
        return "low"
    if rate >= 75:
        return "medium"
    if rate >= 50:
        return "high"
    return "critical"


def priority_score(training_type, expired: int, expiring: int) -> int:
    """Ordering hint for the training-type report: mandatory and safety first, then backlog."""
    score = 0
    if training_type.is_mandatory:
        score += 50
    score += expired * 5
    score += expiring * 3
    name = (training_type.name or "").lower()
    category = (training_type.category or "").lower()
    if "safety" in name or "safety" in category:
        score += 20
    return score


# =====================
# Per-employee
# =====================

def _best_certificate(certs: list, today: Optional[date]):
    """
    The certificate that currently represents a training type for an employee:
    a valid one with the furthest expiry if any, otherwise the most recent.
    """
    if not certs:
        return None
    valid = [c for c in certs if _is_valid(_compliance(c, today))]
    if valid:
        return max(valid, key=lambda c: (c.expiry_date is None, c.expiry_date or date.min))
    return max(certs, key=lambda c: (c.issue_date or date.min))


def employee_compliance(employee, mandatory_types: Iterable, certs: Iterable, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Employee-level compliance: compliant only if every mandatory training type
    has a current certificate that is compliant or expiring soon.

    overall_status is "compliant", "expiring_soon" (all covered but some
    expiring) or "non_compliant".
    """
    by_type: Dict[Any, list] = defaultdict(list)
    owned = current_certificates(c for c in certs if c.employee_id == employee.id)
    for cert in owned:
        by_type[cert.training_type_id].append(cert)

    compliant_types: List[str] = []
    expiring_types: List[str] = []
    expired_types: List[str] = []
    missing_types: List[str] = []
    non_compliant_types: List[str] = []
    mandatory = list(mandatory_types)

    for training_type in mandatory:
        best = _best_certificate(by_type.get(training_type.id, []), today)
        if best is None:
            missing_types.append(training_type.code)
            continue
        status = _compliance(best, today)
        if status == ComplianceStatus.COMPLIANT:
            compliant_types.append(training_type.code)
        elif status == ComplianceStatus.EXPIRING_SOON:
            expiring_types.append(training_type.code)
        elif status == ComplianceStatus.EXPIRED:
            expired_types.append(training_type.code)
        else:
            non_compliant_types.append(training_type.code)

    is_compliant = not (missing_types or expired_types or non_compliant_types)
    if not is_compliant:
        overall = ComplianceStatus.NON_COMPLIANT.value
    elif expiring_types:
        overall = ComplianceStatus.EXPIRING_SOON.value
    else:
        overall = ComplianceStatus.COMPLIANT.value

    covered = len(compliant_types) + len(expiring_types)
    return {
        "employee_id": employee.id,
        "employee_number": employee.employee_number,
        "employee_name": employee.name,
        "department_id": employee.department_id,
        "is_compliant": is_compliant,
        "overall_status": overall,
        "mandatory_total": len(mandatory),
        "mandatory_covered": covered,
        "mandatory_rate": percentage(covered, len(mandatory)) if mandatory else 100.0,
        "compliant_types": compliant_types,
        "expiring_types": expiring_types,
        "expired_types": expired_types,
        "missing_types": missing_types,
        "non_compliant_types": non_compliant_types,
        "certificate_count": len(owned),
    }


def coverage(employees: Iterable, certs: Iterable) -> Dict[str, Any]:
    """Share of employees holding at least one certificate. Distinct from compliance."""
    employee_ids = {e.id for e in employees}
    holders = {c.employee_id for c in current_certificates(certs)} & employee_ids
    return {
        "total_employees": len(employee_ids),
        "employees_with_certificates": len(holders),
        "coverage_rate": percentage(len(holders), len(employee_ids)),
    }


# =====================
# Per-department / per-type
# =====================

def department_compliance(department, employees: Iterable, mandatory_types: Iterable, certs: Iterable, today: Optional[date] = None) -> Dict[str, Any]:
    """
    Department roll-up.

    compliance_rate is certificate based: compliant certificates / all current
    certificates held by the department's employees. employee_compliance_rate
    is the share of certificate-holding employees that satisfy every mandatory
    type; employees without certificates stay out of that denominator.
    """
    members = [e for e in employees if e.department_id == department.id]
    member_ids = {e.id for e in members}
    owned = [c for c in current_certificates(certs) if c.employee_id in member_ids]
    counts = status_counts(owned, today)
    mandatory = list(mandatory_types)

    holders = [e for e in members if any(c.employee_id == e.id for c in owned)]
    compliant_employees = sum(
        1 for e in holders if employee_compliance(e, mandatory, owned, today)["is_compliant"]
    )
    rate = percentage(counts[ComplianceStatus.COMPLIANT.value], counts["total"])

    return {
        "department_id": department.id,
        "department_name": department.name,
        "department_code": department.code,
        "total_employees": len(members),
        "employees_with_certificates": len(holders),
        "coverage_rate": percentage(len(holders), len(members)),
        "total_certificates": counts["total"],
        "active_certificates": counts[ComplianceStatus.COMPLIANT.value],
        "expiring_certificates": counts[ComplianceStatus.EXPIRING_SOON.value],
        "expired_certificates": counts[ComplianceStatus.EXPIRED.value],
        "compliance_rate": rate,
        "compliant_employees": compliant_employees,
        "employee_compliance_rate": percentage(compliant_employees, len(holders)),
        "compliance_status": compliance_label(rate),
    }


def training_type_compliance(training_type, certs: Iterable, today: Optional[date] = None) -> Dict[str, Any]:
    owned = [c for c in current_certificates(certs) if c.training_type_id == training_type.id]
    summary = summarize(owned, today)
    expired = summary[ComplianceStatus.EXPIRED.value]
    expiring = summary[ComplianceStatus.EXPIRING_SOON.value]
    holders = {
        c.employee_id for c in owned if _is_valid(_compliance(c, today))
    }
    return {
        "training_type_id": training_type.id,
        "name": training_type.name,
        "code": training_type.code,
        "category": training_type.category,
        "is_mandatory": bool(training_type.is_mandatory),
        "validity_months": training_type.validity_months,
        "total_certificates": summary["total"],
        "active_certificates": summary[ComplianceStatus.COMPLIANT.value],
        "expiring_certificates": expiring,
        "expired_certificates": expired,
        "employees_trained": len(holders),
        "compliance_rate": summary["compliance_rate"],
        "risk_level": risk_level(summary["compliance_rate"], bool(training_type.is_mandatory)),
        "priority_score": priority_score(training_type, expired, expiring),
    }


# =====================
# Time series
# =====================

def _month_start(day: date) -> date:
    return day.replace(day=1)


def _month_keys(months: int, today: date) -> List[date]:
    """First day of each of the last `months` months, oldest first, current month last."""
    current = _month_start(today)
    return [add_months(current, -i) for i in range(months - 1, -1, -1)]


def _float(value) -> float:
    return float(value) if value is not None else 0.0


def monthly_trends(certs: Iterable, months: int, today: date) -> List[Dict[str, Any]]:
    """
    Completed-training series for the last `months` months, oldest first.

    Buckets by completion date (issue date when missing). Draft, pending and
    cancelled certificates are not completed training. Months without
    activity are present with zeros.
    """
    if months <= 0:
        return []
    keys = _month_keys(months, today)
    buckets = {k: {"completed": 0, "cost": 0.0, "hours": 0.0, "scores": []} for k in keys}

    for cert in certs:
        if LifecycleStatus(cert.status) in UNISSUED_STATUSES:
            continue
        when = cert.completion_date or cert.issue_date
        if when is None:
            continue
        bucket = buckets.get(_month_start(when))
        if bucket is None:
            continue
        bucket["completed"] += 1
        bucket["cost"] += _float(cert.cost)
        bucket["hours"] += _float(cert.training_hours)
        if cert.score is not None:
            bucket["scores"].append(float(cert.score))

    series = []
    for key in keys:
        bucket = buckets[key]
        scores = bucket["scores"]
        series.append({
            "month": key.strftime("%Y-%m"),
            "month_name": key.strftime("%b %Y"),
            "completed": bucket["completed"],
            "total_cost": round(bucket["cost"], 2),
            "total_hours": round(bucket["hours"], 2),
            "average_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
            "cost_per_training": round(bucket["cost"] / bucket["completed"], 2) if bucket["completed"] else 0.0,
        })
    return series


def expiry_forecast(certs: Iterable, months: int, today: date) -> List[Dict[str, Any]]:
    """Upcoming expirations per month from the current month forward, zero-filled."""
    if months <= 0:
        return []
    current = _month_start(today)
    keys = [add_months(current, i) for i in range(months)]
    buckets = {k: 0 for k in keys}
    mandatory_buckets = {k: 0 for k in keys}
    for cert in current_certificates(certs):
        if cert.expiry_date is None or cert.expiry_date < today:
            continue
        if cert.status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
            continue
        key = _month_start(cert.expiry_date)
        if key in buckets:
            buckets[key] += 1
            if cert.training_type is not None and cert.training_type.is_mandatory:
                mandatory_buckets[key] += 1
    return [
        {
            "month": k.strftime("%Y-%m"),
            "month_name": k.strftime("%b %Y"),
            "expiring": buckets[k],
            "mandatory_expiring": mandatory_buckets[k],
        }
        for k in keys
    ]


def expiring_in_periods(certs: Iterable, today: date) -> Dict[str, int]:
    """Cumulative counts expiring within 7/30/60/90 days, plus already expired."""
    result = {f"within_{days}_days": 0 for days in EXPIRY_PERIODS}
    result["expired"] = 0
    for cert in current_certificates(certs):
        if cert.status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
            continue
        remaining = days_until_expiry(cert.expiry_date, today)
        if remaining is None:
            continue
        if remaining < 0:
            result["expired"] += 1
            continue
        for days in EXPIRY_PERIODS:
            if remaining <= days:
                result[f"within_{days}_days"] += 1
    return result


# =====================
# Alerts & renewals
# =====================

def _alert_row(cert, today: date, severity: str) -> Dict[str, Any]:
    employee = cert.employee
    training_type = cert.training_type
    return {
        "certificate_id": cert.id,
        "certificate_number": cert.certificate_number,
        "employee_id": cert.employee_id,
        "employee_name": employee.name if employee else None,
        "training_type": training_type.name if training_type else None,
        "is_mandatory": bool(training_type.is_mandatory) if training_type else False,
        "expiry_date": cert.expiry_date,
        "days_until_expiry": days_until_expiry(cert.expiry_date, today),
        "severity": severity,
    }


def critical_alerts(certs: Iterable, today: date, horizon_days: int = 7) -> List[Dict[str, Any]]:
    """Expired certificates and those expiring within `horizon_days`, most urgent first."""
    alerts = []
    for cert in current_certificates(certs):
        if cert.expiry_date is None:
            continue
        if cert.status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
            continue
        remaining = days_until_expiry(cert.expiry_date, today)
        if remaining < 0:
            alerts.append(_alert_row(cert, today, "expired"))
        elif remaining <= horizon_days:
            alerts.append(_alert_row(cert, today, "critical"))
    alerts.sort(key=lambda a: (not a["is_mandatory"], a["days_until_expiry"]))
    return alerts


def upcoming_renewals(certs: Iterable, today: date, days: int = 90) -> Dict[str, List[Dict[str, Any]]]:
    """Renewable certificates expiring within `days`, grouped by department name."""
    horizon = today + timedelta(days=days)
    grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for cert in current_certificates(certs):
        if cert.expiry_date is None or not (today <= cert.expiry_date <= horizon):
            continue
        if not cert.is_renewable or cert.renewed_to_id:
            continue
        if cert.status in (LifecycleStatus.REVOKED, LifecycleStatus.CANCELLED):
            continue
        department = cert.employee.department if cert.employee is not None else None
        name = department.name if department is not None else "Unassigned"
        grouped[name].append(_alert_row(cert, today, "renewal_due"))
    for rows in grouped.values():
        rows.sort(key=lambda r: r["days_until_expiry"])
    return dict(sorted(grouped.items()))


def provider_performance(providers: Iterable, certs: Iterable, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Per-provider volume, score, cost and how many of its certificates are still valid."""
    by_provider: Dict[Any, list] = defaultdict(list)
    for cert in current_certificates(certs, include_superseded=True):
        if cert.provider_id is not None:
            by_provider[cert.provider_id].append(cert)

    rows = []
    for provider in providers:
        owned = by_provider.get(provider.id, [])
        scores = [float(c.score) for c in owned if c.score is not None]
        passing = [
            c for c in owned
            if c.score is not None and c.passing_score is not None and c.score >= c.passing_score
        ]
        graded = [c for c in owned if c.score is not None and c.passing_score is not None]
        total_cost = sum(_float(c.cost) for c in owned)
        valid = sum(1 for c in owned if c.status != LifecycleStatus.RENEWED and _is_valid(_compliance(c, today)))
        rows.append({
            "provider_id": provider.id,
            "name": provider.name,
            "rating": float(provider.rating) if provider.rating is not None else None,
            "total_certificates": len(owned),
            "valid_certificates": valid,
            "average_score": round(sum(scores) / len(scores), 1) if scores else 0.0,
            "pass_rate": percentage(len(passing), len(graded)),
            "total_cost": round(total_cost, 2),
            "average_cost": round(total_cost / len(owned), 2) if owned else 0.0,
            "total_hours": round(sum(_float(c.training_hours) for c in owned), 2),
        })
    rows.sort(key=lambda r: r["total_certificates"], reverse=True)
    return rows
