import uuid
from datetime import date
from types import SimpleNamespace

from certhub.services import compliance


TODAY = date(2024, 6, 1)


def _type(code, mandatory=True, name=None, category="safety", warning_days=30):
    return SimpleNamespace(
        id=uuid.uuid4(),
        code=code,
        name=name or code,
        category=category,
        is_mandatory=mandatory,
        validity_months=12,
        warning_days=warning_days,
    )


def _employee(number, department=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        employee_number=number,
        name=f"Employee {number}",
        department_id=department.id if department else None,
        department=department,
    )


def _cert(employee, training_type, expiry, status="active", issue=date(2023, 6, 1), **extra):
    fields = dict(
        id=uuid.uuid4(),
        certificate_number=f"{training_type.code}-{uuid.uuid4().hex[:6]}",
        employee_id=employee.id,
        employee=employee,
        training_type_id=training_type.id,
        training_type=training_type,
        provider_id=None,
        issue_date=issue,
        completion_date=None,
        expiry_date=expiry,
        status=status,
        compliance_status="compliant",
        suspension_start=None,
        suspension_end=None,
        score=None,
        passing_score=None,
        cost=None,
        training_hours=None,
        is_renewable=True,
        renewed_to_id=None,
    )
    fields.update(extra)
    return SimpleNamespace(**fields)


def test_rates_are_zero_when_nothing_counts():
    assert compliance.compliance_rate(0, 0, 0) == 0.0
    assert compliance.percentage(3, 0) == 0.0
    summary = compliance.summarize([], TODAY)
    assert summary["total"] == 0
    assert summary["compliance_rate"] == 0.0


def test_compliance_rate_ignores_pending_and_non_compliant():
    fa = _type("FA")
    emp = _employee("E1")
    certs = [
        _cert(emp, fa, date(2025, 1, 1)),                      # compliant
        _cert(emp, fa, date(2024, 6, 10)),                     # expiring
        _cert(emp, fa, date(2024, 1, 1)),                      # expired
        _cert(emp, fa, date(2025, 1, 1), status="revoked"),    # non-compliant
        _cert(emp, fa, date(2025, 1, 1), status="draft"),      # pending
    ]
    summary = compliance.summarize(certs, TODAY)
    assert summary["compliant"] == 1
    assert summary["expiring_soon"] == 1
    assert summary["expired"] == 1
    assert summary["non_compliant"] == 1
    assert summary["pending"] == 1
    assert summary["total"] == 5
    assert summary["compliance_rate"] == 33.3
    assert 0 <= summary["compliance_rate"] <= 100


def test_renewed_certificates_are_not_counted():
    fa = _type("FA")
    emp = _employee("E1")
    certs = [
        _cert(emp, fa, date(2024, 1, 1), status="renewed"),
        _cert(emp, fa, date(2025, 1, 1)),
    ]
    assert compliance.summarize(compliance.current_certificates(certs), TODAY)["compliance_rate"] == 100.0


def test_employee_needs_every_mandatory_type():
    a, b = _type("A"), _type("B")
    emp = _employee("E1")
    certs = [
        _cert(emp, a, date(2025, 1, 1)),
        _cert(emp, b, date(2024, 1, 1)),
    ]
    result = compliance.employee_compliance(emp, [a, b], certs, TODAY)

    assert result["is_compliant"] is False
    assert result["overall_status"] == "non_compliant"
    assert result["compliant_types"] == ["A"]
    assert result["expired_types"] == ["B"]
    assert result["mandatory_rate"] == 50.0


def test_missing_mandatory_type_is_non_compliant():
    a, b = _type("A"), _type("B")
    emp = _employee("E1")
    result = compliance.employee_compliance(emp, [a, b], [_cert(emp, a, date(2025, 1, 1))], TODAY)
    assert result["is_compliant"] is False
    assert result["missing_types"] == ["B"]


def test_expiring_still_counts_as_compliant():
    a = _type("A")
    emp = _employee("E1")
    result = compliance.employee_compliance(emp, [a], [_cert(emp, a, date(2024, 6, 20))], TODAY)
    assert result["is_compliant"] is True
    assert result["overall_status"] == "expiring_soon"


def test_best_certificate_per_type_wins():
    a = _type("A")
    emp = _employee("E1")
    certs = [
        _cert(emp, a, date(2023, 1, 1)),
        _cert(emp, a, date(2025, 1, 1)),
    ]
    assert compliance.employee_compliance(emp, [a], certs, TODAY)["is_compliant"] is True


def test_no_mandatory_types_means_compliant():
    emp = _employee("E1")
    result = compliance.employee_compliance(emp, [], [], TODAY)
    assert result["is_compliant"] is True
    assert result["mandatory_rate"] == 100.0


def test_department_rates():
    dept = SimpleNamespace(id=uuid.uuid4(), name="Operations", code="OPS")
    a = _type("A")
    e1, e2, e3 = _employee("E1", dept), _employee("E2", dept), _employee("E3", dept)
    certs = [
        _cert(e1, a, date(2025, 1, 1)),
        _cert(e2, a, date(2024, 1, 1)),
    ]
    result = compliance.department_compliance(dept, [e1, e2, e3], [a], certs, TODAY)

    assert result["total_employees"] == 3
    assert result["employees_with_certificates"] == 2
    assert result["coverage_rate"] == 66.7
    assert result["compliance_rate"] == 50.0
    assert result["compliant_employees"] == 1
    assert result["employee_compliance_rate"] == 50.0


def test_coverage_is_separate_from_compliance():
    a = _type("A")
    e1, e2 = _employee("E1"), _employee("E2")
    result = compliance.coverage([e1, e2], [_cert(e1, a, date(2024, 1, 1))])
    assert result == {"total_employees": 2, "employees_with_certificates": 1, "coverage_rate": 50.0}


def test_training_type_report_row():
    a = _type("A", name="Fire Safety")
    e1 = _employee("E1")
    row = compliance.training_type_compliance(a, [_cert(e1, a, date(2024, 1, 1))], TODAY)
    assert row["expired_certificates"] == 1
    assert row["compliance_rate"] == 0.0
    assert row["risk_level"] == "critical"
    assert row["priority_score"] == 50 + 5 + 20


def test_grades_and_labels():
    assert compliance.compliance_grade(97) == "A+"
    assert compliance.compliance_grade(72) == "B-"
    assert compliance.compliance_grade(10) == "F"
    assert compliance.compliance_label(80) == "good"
    assert compliance.risk_level(10, is_mandatory=False) == "low"


def test_monthly_trends_are_zero_filled_oldest_first():
    a = _type("A")
    emp = _employee("E1")
    certs = [
        _cert(emp, a, None, issue=date(2024, 4, 10), cost=100, training_hours=8, score=90),
        _cert(emp, a, None, issue=date(2024, 4, 20), cost=50, training_hours=4, score=70),
        _cert(emp, a, None, issue=date(2023, 1, 1)),
    ]
    series = compliance.monthly_trends(certs, 3, TODAY)

    assert [m["month"] for m in series] == ["2024-04", "2024-05", "2024-06"]
    assert series[0]["completed"] == 2
    assert series[0]["total_cost"] == 150.0
    assert series[0]["average_score"] == 80.0
    assert series[0]["cost_per_training"] == 75.0
    assert series[1]["completed"] == 0
    assert series[2]["completed"] == 0


def test_monthly_trends_skip_unissued_certificates():
    a = _type("A")
    emp = _employee("E1")
    certs = [
        _cert(emp, a, None, status="draft", issue=date(2024, 5, 10), cost=100),
        _cert(emp, a, None, status="pending", issue=date(2024, 5, 11), cost=40),
        _cert(emp, a, None, status="cancelled", issue=date(2024, 5, 12), cost=40),
        _cert(emp, a, None, status="renewed", issue=date(2024, 5, 20), cost=60),
    ]
    may = compliance.monthly_trends(certs, 3, TODAY)[1]

    assert may["month"] == "2024-05"
    assert may["completed"] == 1
    assert may["total_cost"] == 60.0
    assert may["cost_per_training"] == 60.0


def test_expiry_forecast_and_periods():
    a = _type("A")
    emp = _employee("E1")
    certs = [
        _cert(emp, a, date(2024, 6, 5)),
        _cert(emp, a, date(2024, 7, 15)),
        _cert(emp, a, date(2024, 5, 1)),
        _cert(emp, a, date(2024, 6, 6), status="revoked"),
    ]
    forecast = compliance.expiry_forecast(certs, 2, TODAY)
    assert [f["expiring"] for f in forecast] == [1, 1]

    periods = compliance.expiring_in_periods(certs, TODAY)
    assert periods["within_7_days"] == 1
    assert periods["within_30_days"] == 1
    assert periods["within_60_days"] == 2
    assert periods["expired"] == 1


def test_alerts_and_upcoming_renewals():
    dept = SimpleNamespace(id=uuid.uuid4(), name="Operations", code="OPS")
    a = _type("A")
    e1, e2 = _employee("E1", dept), _employee("E2")
    certs = [
        _cert(e1, a, date(2024, 6, 3)),
        _cert(e1, a, date(2024, 5, 20)),
        _cert(e2, a, date(2024, 8, 1)),
        _cert(e2, a, date(2024, 8, 2), is_renewable=False),
    ]
    alerts = compliance.critical_alerts(certs, TODAY)
    assert [a["severity"] for a in alerts] == ["expired", "critical"]

    renewals = compliance.upcoming_renewals(certs, TODAY, days=90)
    assert list(renewals) == ["Operations", "Unassigned"]
    assert len(renewals["Operations"]) == 1
    assert len(renewals["Unassigned"]) == 1
