"""
Spreadsheet import/export.

Rows come in as plain str -> str mappings from .xlsx or .csv files and are
fed through the same services as interactive creation, one commit per row.
Exports are written with openpyxl (or csv for the flat certificate list).
"""
import csv
import io
import os
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Iterable

import structlog
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from slugify import slugify
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..clock import Clock
from ..errors import CertHubError, ValidationError
from ..models.models import Certificate, Department, Employee, TrainingType, TrainingProvider
from . import certificates as certificate_service
from . import employees as employee_service
from .status import days_until_expiry


log = structlog.get_logger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# Header spellings seen in HR exports -> canonical field
HEADER_ALIASES = {
    "nip": "employee_number",
    "employee_id": "employee_number",
    "employee_no": "employee_number",
    "emp_no": "employee_number",
    "employee_name": "name",
    "full_name": "name",
    "dept": "department",
    "department_name": "department",
    "job_title": "position",
    "title": "position",
    "joined": "hire_date",
    "start_date": "hire_date",
    "training": "training_type",
    "training_name": "training_type",
    "training_type_code": "training_type",
    "certificate_type": "training_type",
    "course": "training_type",
    "cert_no": "certificate_number",
    "certificate_no": "certificate_number",
    "issued": "issue_date",
    "date_issued": "issue_date",
    "training_date": "issue_date",
    "expiry": "expiry_date",
    "expired_date": "expiry_date",
    "expiration_date": "expiry_date",
    "valid_until": "expiry_date",
    "completed": "completion_date",
    "instructor": "instructor_name",
    "trainer": "instructor_name",
    "venue": "location",
    "hours": "training_hours",
    "duration": "training_hours",
    "fee": "cost",
    "remarks": "notes",
    "training_provider": "provider",
    "provider_name": "provider",
    "issued_by": "issuer",
}

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d", "%d.%m.%Y", "%d %b %Y", "%d %B %Y")

# Sheet line a row came from; blank lines still count
ROW_NUMBER_KEY = "_row"


# =====================
# Reading
# =====================

def normalize_header(value: Any) -> str:
    key = str(value or "").strip().lower()
    key = "_".join(key.replace("-", " ").replace(".", " ").split())
    return HEADER_ALIASES.get(key, key)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_rows(filename: str, content: bytes) -> List[Dict[str, str]]:
    """
    Parse an uploaded .xlsx/.csv into row mappings keyed by canonical header.

    Blank lines are dropped, but every row keeps its line number in the sheet
    under ROW_NUMBER_KEY so import errors point at the right place.
    """
    ext = os.path.splitext(filename or "")[1].lower()
    if ext in (".xlsx", ".xlsm"):
        try:
            wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except Exception as e:
            raise ValidationError({"file": f"Could not read spreadsheet: {e}"}) from e
        ws = wb.active
        raw_rows = [[_cell_text(v) for v in row] for row in ws.iter_rows(values_only=True)]
        wb.close()
    elif ext == ".csv":
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
        raw_rows = [[c.strip() for c in row] for row in csv.reader(io.StringIO(text))]
    else:
        raise ValidationError({"file": "Only .xlsx and .csv files can be imported"})

    numbered = [(number, r) for number, r in enumerate(raw_rows, start=1) if any(r)]
    if not numbered:
        return []
    headers = [normalize_header(h) for h in numbered[0][1]]
    rows = []
    for number, raw in numbered[1:]:
        row = {h: (raw[i] if i < len(raw) else "") for i, h in enumerate(headers) if h}
        row[ROW_NUMBER_KEY] = number
        rows.append(row)
    return rows


def parse_date(value: Optional[str], field: str) -> Optional[date]:
    value = (value or "").strip()
    if not value:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValidationError({field: f"Unrecognized date '{value}'"})


def parse_number(value: Optional[str], field: str) -> Optional[Decimal]:
    value = (value or "").strip().replace(",", "")
    if not value:
        return None
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise ValidationError({field: f"'{value}' is not a number"}) from e


def parse_bool(value: Optional[str], default: bool = True) -> bool:
    value = (value or "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "y", "ya")


# =====================
# Lookups
# =====================

def _resolve_department(db: Session, value: str) -> Optional[Department]:
    """Find a department by code or name, creating it when unknown."""
    value = (value or "").strip()
    if not value:
        return None
    department = db.query(Department).filter(
        (func.upper(Department.code) == value.upper()) | (func.lower(Department.name) == value.lower())
    ).first()
    if department:
        return department

    base = slugify(value, separator="")[:16].upper() or "DEPT"
    code, n = base, 1
    while db.query(Department.id).filter(Department.code == code).first():
        n += 1
        code = f"{base}{n}"
    department = Department(name=value, code=code, is_active=True)
    db.add(department)
    db.flush()
    log.info("import_department_created", name=value, code=code)
    return department


def _resolve_training_type(db: Session, value: str) -> Optional[TrainingType]:
    value = (value or "").strip()
    if not value:
        return None
    return db.query(TrainingType).filter(
        (func.upper(TrainingType.code) == value.upper()) | (func.lower(TrainingType.name) == value.lower())
    ).first()


def _resolve_provider(db: Session, value: str) -> Optional[TrainingProvider]:
    value = (value or "").strip()
    if not value:
        return None
    return db.query(TrainingProvider).filter(
        (func.upper(TrainingProvider.code) == value.upper()) | (func.lower(TrainingProvider.name) == value.lower())
    ).first()


def _new_result() -> Dict[str, Any]:
    return {"created": 0, "updated": 0, "skipped": 0, "errors": []}


def _row_error(result: Dict[str, Any], row_number: int, exc: CertHubError) -> None:
    result["errors"].append({
        "row": row_number,
        "message": exc.message,
        "errors": exc.errors,
    })


# =====================
# Imports
# =====================

def employee_row_to_data(db: Session, row: Dict[str, str]) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "employee_number": (row.get("employee_number") or "").strip(),
        "name": (row.get("name") or "").strip(),
        "email": (row.get("email") or "").strip() or None,
        "position": (row.get("position") or "").strip() or None,
        "status": (row.get("status") or "").strip().lower() or None,
        "hire_date": parse_date(row.get("hire_date"), "hire_date"),
    }
    department = _resolve_department(db, row.get("department", ""))
    if department:
        data["department_id"] = department.id
    return data


def import_employees(
    db: Session,
    rows: Iterable[Dict[str, str]],
    actor: Optional[str],
    clock: Clock,
    update_existing: bool = True,
) -> Dict[str, Any]:
    """
    Create or update employees keyed by employee_number.

    Each row commits on its own; a bad row is rolled back and reported with
    its spreadsheet row number. Rows that did not come from read_rows are
    numbered as if the header were row 1.
    """
    result = _new_result()
    for index, row in enumerate(rows, start=2):
        row_number = row.get(ROW_NUMBER_KEY, index)
        try:
            data = employee_row_to_data(db, row)
            existing = None
            if data["employee_number"]:
                existing = db.query(Employee).filter(Employee.employee_number == data["employee_number"]).first()
            if existing:
                if not update_existing:
                    result["skipped"] += 1
                    continue
                employee_service.update_employee(db, existing.id, data, actor, clock)
                result["updated"] += 1
            else:
                data["status"] = data.get("status") or "active"
                employee_service.create_employee(db, data, actor, clock)
                result["created"] += 1
        except CertHubError as e:
            db.rollback()
            _row_error(result, row_number, e)

    log.info("employees_imported", **{k: v for k, v in result.items() if k != "errors"}, errors=len(result["errors"]))
    return result


def certificate_row_to_data(db: Session, row: Dict[str, str]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}

    employee = None
    number = (row.get("employee_number") or "").strip()
    if not number:
        errors["employee_number"] = "Employee number is required"
    else:
        employee = db.query(Employee).filter(Employee.employee_number == number).first()
        if not employee:
            errors["employee_number"] = f"Unknown employee {number}"

    training_type = _resolve_training_type(db, row.get("training_type", ""))
    if not training_type:
        errors["training_type"] = "Unknown or missing training type"

    provider = None
    if (row.get("provider") or "").strip():
        provider = _resolve_provider(db, row["provider"])
        if not provider:
            errors["provider"] = f"Unknown provider {row['provider']}"

    if errors:
        raise ValidationError(errors)

    status = (row.get("status") or "").strip().lower() or "active"
    return {
        "employee_id": employee.id,
        "training_type_id": training_type.id,
        "provider_id": provider.id if provider else None,
        "certificate_number": (row.get("certificate_number") or "").strip() or None,
        "issuer": (row.get("issuer") or "").strip() or None,
        "issue_date": parse_date(row.get("issue_date"), "issue_date"),
        "completion_date": parse_date(row.get("completion_date"), "completion_date"),
        "expiry_date": parse_date(row.get("expiry_date"), "expiry_date"),
        "score": parse_number(row.get("score"), "score"),
        "passing_score": parse_number(row.get("passing_score"), "passing_score"),
        "training_hours": parse_number(row.get("training_hours"), "training_hours"),
        "cost": parse_number(row.get("cost"), "cost"),
        "location": (row.get("location") or "").strip() or None,
        "instructor_name": (row.get("instructor_name") or "").strip() or None,
        "notes": (row.get("notes") or "").strip() or None,
        "is_renewable": parse_bool(row.get("is_renewable"), default=True),
        "status": status,
    }


def import_certificates(
    db: Session,
    rows: Iterable[Dict[str, str]],
    actor: Optional[str],
    clock: Clock,
    update_existing: bool = True,
) -> Dict[str, Any]:
    """
    Create certificates from rows, or update them when the certificate
    number already exists. Validation is the interactive one.
    """
    result = _new_result()
    for index, row in enumerate(rows, start=2):
        row_number = row.get(ROW_NUMBER_KEY, index)
        try:
            data = certificate_row_to_data(db, row)
            existing = None
            if data["certificate_number"]:
                existing = db.query(Certificate).filter(
                    Certificate.certificate_number == data["certificate_number"]
                ).first()
            if existing:
                if not update_existing:
                    result["skipped"] += 1
                    continue
                if existing.employee_id != data["employee_id"]:
                    raise ValidationError({"certificate_number": "Certificate number belongs to another employee"})
                fields = {k: v for k, v in data.items() if k in certificate_service.UPDATABLE_FIELDS}
                fields.pop("certificate_number", None)
                certificate_service.update_certificate(db, existing.id, fields, actor, clock)
                result["updated"] += 1
            else:
                if data["status"] not in ("draft", "pending", "completed", "active"):
                    raise ValidationError({"status": f"Cannot import a certificate as {data['status']}"})
                certificate_service.create_certificate(db, data, actor, clock)
                result["created"] += 1
        except CertHubError as e:
            db.rollback()
            _row_error(result, row_number, e)

    log.info("certificates_imported", **{k: v for k, v in result.items() if k != "errors"}, errors=len(result["errors"]))
    return result


# =====================
# Exports
# =====================

CERTIFICATE_COLUMNS = [
    ("Certificate Number", lambda c, t: c.certificate_number),
    ("Verification Code", lambda c, t: c.verification_code),
    ("Employee Number", lambda c, t: c.employee.employee_number if c.employee else None),
    ("Employee Name", lambda c, t: c.employee.name if c.employee else None),
    ("Department", lambda c, t: c.employee.department.name if c.employee and c.employee.department else None),
    ("Training Type", lambda c, t: c.training_type.name if c.training_type else None),
    ("Category", lambda c, t: c.training_type.category if c.training_type else None),
    ("Mandatory", lambda c, t: "Yes" if c.training_type and c.training_type.is_mandatory else "No"),
    ("Issuer", lambda c, t: c.issuer),
    ("Issue Date", lambda c, t: c.issue_date),
    ("Expiry Date", lambda c, t: c.expiry_date),
    ("Days Until Expiry", lambda c, t: days_until_expiry(c.expiry_date, t)),
    ("Status", lambda c, t: c.status),
    ("Compliance Status", lambda c, t: c.compliance_status),
    ("Verified", lambda c, t: "Yes" if c.is_verified else "No"),
    ("Score", lambda c, t: float(c.score) if c.score is not None else None),
    ("Training Hours", lambda c, t: float(c.training_hours) if c.training_hours is not None else None),
    ("Cost", lambda c, t: float(c.cost) if c.cost is not None else None),
    ("Renewal Generation", lambda c, t: c.renewal_generation),
]

HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill("solid", fgColor="305496")


def _write_sheet(ws, headers: List[str], rows: Iterable[List[Any]]) -> None:
    ws.append(headers)
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
    widths = [len(h) for h in headers]
    for row in rows:
        ws.append(row)
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(str(value)) if value is not None else 0)
    for i, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = min(width + 2, 50)
    ws.freeze_panes = "A2"


def _sanitize_cell(value: Any) -> Any:
    # Keep spreadsheet apps from evaluating imported text as formulas
    if isinstance(value, str) and value and value[0] in ("=", "+", "-", "@"):
        return "'" + value
    return value


def export_certificates_xlsx(certs: Iterable[Certificate], today: date) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Certificates"
    _write_sheet(
        ws,
        [name for name, _ in CERTIFICATE_COLUMNS],
        ([_sanitize_cell(getter(c, today)) for _, getter in CERTIFICATE_COLUMNS] for c in certs),
    )
    stream = io.BytesIO()
    wb.save(stream)
    return stream.getvalue()


def export_certificates_csv(certs: Iterable[Certificate], today: date) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([name for name, _ in CERTIFICATE_COLUMNS])
    for cert in certs:
        writer.writerow([_sanitize_cell(getter(cert, today)) for _, getter in CERTIFICATE_COLUMNS])
    return output.getvalue()


def export_compliance_report_xlsx(
    summary: Dict[str, Any],
    departments: List[Dict[str, Any]],
    training_types: List[Dict[str, Any]],
    employees: List[Dict[str, Any]],
) -> bytes:
    """Workbook with a summary sheet plus department, training type and employee sheets."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    counts = summary.get("summary", {})
    _write_sheet(ws, ["Metric", "Value"], [
        ["As of", summary.get("as_of")],
        ["Total certificates", counts.get("total", 0)],
        ["Compliant", counts.get("compliant", 0)],
        ["Expiring soon", counts.get("expiring_soon", 0)],
        ["Expired", counts.get("expired", 0)],
        ["Non compliant (revoked)", counts.get("non_compliant", 0)],
        ["Under review (suspended)", counts.get("under_review", 0)],
        ["Pending", counts.get("pending", 0)],
        ["Compliance rate (%)", counts.get("compliance_rate", 0.0)],
        ["Compliance grade", summary.get("compliance_grade")],
        ["Risk level", summary.get("risk_level")],
        ["Coverage (%)", summary.get("coverage", {}).get("coverage_rate", 0.0)],
    ])

    _write_sheet(
        wb.create_sheet("Departments"),
        ["Department", "Code", "Employees", "With Certificates", "Certificates", "Active", "Expiring",
         "Expired", "Compliance Rate (%)", "Employee Compliance Rate (%)", "Status"],
        ([
            d["department_name"], d["department_code"], d["total_employees"], d["employees_with_certificates"],
            d["total_certificates"], d["active_certificates"], d["expiring_certificates"], d["expired_certificates"],
            d["compliance_rate"], d["employee_compliance_rate"], d["compliance_status"],
        ] for d in departments),
    )

    _write_sheet(
        wb.create_sheet("Training Types"),
        ["Training Type", "Code", "Category", "Mandatory", "Certificates", "Active", "Expiring", "Expired",
         "Employees Trained", "Compliance Rate (%)", "Risk Level"],
        ([
            t["name"], t["code"], t["category"], "Yes" if t["is_mandatory"] else "No", t["total_certificates"],
            t["active_certificates"], t["expiring_certificates"], t["expired_certificates"],
            t["employees_trained"], t["compliance_rate"], t["risk_level"],
        ] for t in training_types),
    )

    _write_sheet(
        wb.create_sheet("Employees"),
        ["Employee Number", "Name", "Status", "Mandatory Covered", "Mandatory Total", "Missing", "Expired", "Expiring"],
        ([
            e["employee_number"], e["employee_name"], e["overall_status"], e["mandatory_covered"],
            e["mandatory_total"], ", ".join(e["missing_types"]), ", ".join(e["expired_types"]),
            ", ".join(e["expiring_types"]),
        ] for e in employees),
    )

    stream = io.BytesIO()
    wb.save(stream)
    return stream.getvalue()
