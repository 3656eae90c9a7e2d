"""
Report builders: load rows once, hand them to the compliance roll-ups.
"""
import uuid
from datetime import date
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError
from ..models.models import Certificate, Department, Employee, TrainingType, TrainingProvider
from . import compliance
from .status import accreditation_status


def load_certificates(
    db: Session,
    department_id: Optional[uuid.UUID] = None,
    category: Optional[str] = None,
    issued_from: Optional[date] = None,
    issued_to: Optional[date] = None,
    include_superseded: bool = False,
) -> List[Certificate]:
    query = db.query(Certificate).join(Certificate.employee).join(Certificate.training_type).options(
        joinedload(Certificate.employee).joinedload(Employee.department),
        joinedload(Certificate.training_type),
    )
    if not include_superseded:
        query = query.filter(Certificate.status != "renewed")
    if department_id:
        query = query.filter(Employee.department_id == department_id)
    if category:
        query = query.filter(TrainingType.category == category)
    if issued_from:
        query = query.filter(Certificate.issue_date >= issued_from)
    if issued_to:
        query = query.filter(Certificate.issue_date <= issued_to)
    return query.all()


def _active_employees(db: Session, department_id: Optional[uuid.UUID] = None) -> List[Employee]:
    query = db.query(Employee).filter(Employee.status == "active")
    if department_id:
        query = query.filter(Employee.department_id == department_id)
    return query.order_by(Employee.name).all()


def _mandatory_types(db: Session) -> List[TrainingType]:
    return db.query(TrainingType).filter(
        TrainingType.is_mandatory == True,
        TrainingType.is_active == True,
    ).order_by(TrainingType.code).all()


def employee_report(db: Session, employee_id: uuid.UUID, today: date) -> Dict[str, Any]:
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise NotFoundError(f"Employee {employee_id} not found")
    certs = db.query(Certificate).options(joinedload(Certificate.training_type)).filter(
        Certificate.employee_id == employee_id
    ).all()
    result = compliance.employee_compliance(employee, _mandatory_types(db), certs, today)
    result["summary"] = compliance.summarize(compliance.current_certificates(certs), today)
    return result


def employees_report(
    db: Session,
    today: date,
    department_id: Optional[uuid.UUID] = None,
    only_non_compliant: bool = False,
) -> Dict[str, Any]:
    """
    Mandatory-training compliance for every active employee.

    The rate only counts employees that hold at least one certificate;
    coverage is reported separately.
    """
    employees = _active_employees(db, department_id)
    certs = load_certificates(db, department_id=department_id)
    mandatory = _mandatory_types(db)

    rows = [compliance.employee_compliance(e, mandatory, certs, today) for e in employees]
    holders = [r for r in rows if r["certificate_count"] > 0]
    compliant = sum(1 for r in holders if r["is_compliant"])
    if only_non_compliant:
        rows = [r for r in rows if not r["is_compliant"]]

    return {
        "employees": rows,
        "compliant_employees": compliant,
        "employees_with_certificates": len(holders),
        "employee_compliance_rate": compliance.percentage(compliant, len(holders)),
        "coverage": compliance.coverage(employees, certs),
    }


def departments_report(db: Session, today: date) -> List[Dict[str, Any]]:
    departments = db.query(Department).filter(Department.is_active == True).order_by(Department.name).all()
    employees = _active_employees(db)
    certs = load_certificates(db)
    mandatory = _mandatory_types(db)
    return [
        compliance.department_compliance(d, employees, mandatory, certs, today)
        for d in departments
    ]


def training_types_report(db: Session, today: date, category: Optional[str] = None) -> List[Dict[str, Any]]:
    query = db.query(TrainingType).filter(TrainingType.is_active == True)
    if category:
        query = query.filter(TrainingType.category == category)
    certs = load_certificates(db, category=category)
    rows = [compliance.training_type_compliance(t, certs, today) for t in query.all()]
    rows.sort(key=lambda r: r["priority_score"], reverse=True)
    return rows


def providers_report(db: Session, today: date) -> List[Dict[str, Any]]:
    providers = db.query(TrainingProvider).order_by(TrainingProvider.name).all()
    certs = load_certificates(db, include_superseded=True)
    rows = compliance.provider_performance(providers, certs, today)
    expiry_by_id = {p.id: p.accreditation_expiry for p in providers}
    for row in rows:
        expiry = expiry_by_id[row["provider_id"]]
        row["accreditation_status"] = accreditation_status(expiry, today).value if expiry else None
    return rows


def trends_report(db: Session, today: date, months: int = 12, department_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    certs = load_certificates(db, department_id=department_id, include_superseded=True)
    return {
        "months": months,
        "completed": compliance.monthly_trends(certs, months, today),
        "forecast": compliance.expiry_forecast(certs, months, today),
    }


def expiring_report(db: Session, today: date, days: int = 90, department_id: Optional[uuid.UUID] = None) -> Dict[str, Any]:
    certs = load_certificates(db, department_id=department_id)
    return {
        "periods": compliance.expiring_in_periods(certs, today),
        "critical_alerts": compliance.critical_alerts(certs, today),
        "upcoming_renewals": compliance.upcoming_renewals(certs, today, days),
    }


def dashboard(db: Session, today: date, department_id: Optional[uuid.UUID] = None, category: Optional[str] = None) -> Dict[str, Any]:
    """Headline numbers for the compliance dashboard."""
    certs = load_certificates(db, department_id=department_id, category=category)
    employees = _active_employees(db, department_id)
    summary = compliance.summarize(certs, today)
    mandatory = _mandatory_types(db)
    mandatory_ids = {t.id for t in mandatory}
    mandatory_summary = compliance.summarize([c for c in certs if c.training_type_id in mandatory_ids], today)
    rate = summary["compliance_rate"]

    return {
        "as_of": today,
        "summary": summary,
        "mandatory_summary": mandatory_summary,
        "compliance_grade": compliance.compliance_grade(rate),
        "compliance_status": compliance.compliance_label(rate),
        "risk_level": compliance.risk_level(mandatory_summary["compliance_rate"]) if mandatory else "low",
        "coverage": compliance.coverage(employees, certs),
        "expiring": compliance.expiring_in_periods(certs, today),
        "critical_alerts": compliance.critical_alerts(certs, today)[:20],
    }
