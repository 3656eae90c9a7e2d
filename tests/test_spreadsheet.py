import csv
import io
from datetime import date
from decimal import Decimal

import pytest
from openpyxl import Workbook, load_workbook

from certhub.errors import ValidationError
from certhub.models.models import Certificate, Department, Employee
from certhub.services import reports, spreadsheet

from .conftest import make_certificate, make_employee, make_training_type


def _xlsx(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    stream = io.BytesIO()
    wb.save(stream)
    return stream.getvalue()


def test_read_rows_normalizes_headers():
    content = "NIP,Full Name,Dept,Start Date\nE100,Budi Santoso,Warehouse,01/02/2023\n".encode()
    rows = spreadsheet.read_rows("staff.csv", content)
    assert rows == [{
        "employee_number": "E100",
        "name": "Budi Santoso",
        "department": "Warehouse",
        "hire_date": "01/02/2023",
        spreadsheet.ROW_NUMBER_KEY: 2,
    }]


def test_read_rows_rejects_other_formats():
    with pytest.raises(ValidationError):
        spreadsheet.read_rows("staff.txt", b"whatever")


def test_parse_helpers():
    assert spreadsheet.parse_date("01/02/2023", "hire_date") == date(2023, 2, 1)
    assert spreadsheet.parse_date("2023-02-01", "hire_date") == date(2023, 2, 1)
    assert spreadsheet.parse_number("1,250.50", "cost") == Decimal("1250.50")
    assert spreadsheet.parse_bool("", default=False) is False
    assert spreadsheet.parse_bool("Yes") is True
    with pytest.raises(ValidationError):
        spreadsheet.parse_date("next tuesday", "issue_date")


def test_import_employees_reports_bad_rows(db, clock):
    content = (
        "employee_number,name,email,department,hire_date\n"
        "E100,Budi Santoso,budi@example.com,Warehouse,2023-02-01\n"
        "E101,,nobody@example.com,Warehouse,2023-02-01\n"
        "E102,Sari Dewi,not-an-email,Warehouse,2023-02-01\n"
        "E103,Rina Putri,rina@example.com,Warehouse,2030-01-01\n"
    ).encode()
    result = spreadsheet.import_employees(db, spreadsheet.read_rows("staff.csv", content), "hr-1", clock)

    assert result["created"] == 1
    assert [e["row"] for e in result["errors"]] == [3, 4, 5]
    assert "name" in result["errors"][0]["errors"]
    assert "email" in result["errors"][1]["errors"]
    assert "hire_date" in result["errors"][2]["errors"]
    assert db.query(Employee).count() == 1
    assert db.query(Department).filter(Department.name == "Warehouse").count() == 1


def test_import_errors_count_blank_lines(db, clock):
    content = (
        "employee_number,name\n"
        "E100,Budi Santoso\n"
        ",\n"
        "\n"
        "E101,\n"
    ).encode()
    result = spreadsheet.import_employees(db, spreadsheet.read_rows("staff.csv", content), "hr-1", clock)

    assert result["created"] == 1
    assert [e["row"] for e in result["errors"]] == [5]


def test_import_employees_updates_existing(db, clock):
    make_employee(db, number="E100", name="Old Name")
    content = b"employee_number,name,position\nE100,New Name,Supervisor\n"

    result = spreadsheet.import_employees(db, spreadsheet.read_rows("staff.csv", content), "hr-1", clock)
    assert result["updated"] == 1

    result = spreadsheet.import_employees(
        db, spreadsheet.read_rows("staff.csv", content), "hr-1", clock, update_existing=False
    )
    assert result["skipped"] == 1
    employee = db.query(Employee).filter(Employee.employee_number == "E100").one()
    assert employee.name == "New Name"
    assert employee.position == "Supervisor"


def test_import_certificates_from_xlsx(db, clock):
    make_employee(db, number="E001")
    make_training_type(db, code="FA", name="First Aid")
    content = _xlsx([
        ["Employee No", "Training", "Cert No", "Date Issued", "Score"],
        ["E001", "First Aid", "FA-IMPORT-1", date(2024, 1, 15), 85],
        ["E001", "Forklift", "FL-IMPORT-1", date(2024, 1, 15), 90],
        ["E404", "FA", "FA-IMPORT-2", date(2024, 1, 15), 70],
        ["E001", "FA", "FA-IMPORT-3", "2099-01-01", 70],
    ])
    result = spreadsheet.import_certificates(db, spreadsheet.read_rows("certs.xlsx", content), "hr-1", clock)

    assert result["created"] == 1
    assert [e["row"] for e in result["errors"]] == [3, 4, 5]
    cert = db.query(Certificate).one()
    assert cert.certificate_number == "FA-IMPORT-1"
    assert cert.expiry_date == date(2025, 1, 15)
    assert float(cert.score) == 85


def test_import_certificates_updates_by_number(db, clock):
    employee = make_employee(db, number="E001")
    training_type = make_training_type(db, code="FA", name="First Aid")
    make_certificate(db, clock, employee, training_type, certificate_number="FA-1")
    content = b"employee_number,training_type,certificate_number,issue_date,notes\nE001,FA,FA-1,2024-03-01,Refreshed\n"

    result = spreadsheet.import_certificates(db, spreadsheet.read_rows("certs.csv", content), "hr-1", clock)

    assert result["updated"] == 1
    cert = db.query(Certificate).one()
    assert cert.notes == "Refreshed"
    assert cert.expiry_date == date(2025, 3, 1)


def test_certificate_exports(db, clock):
    employee = make_employee(db, name="=HYPERLINK(\"x\")")
    training_type = make_training_type(db)
    make_certificate(db, clock, employee, training_type)
    certs = reports.load_certificates(db)

    wb = load_workbook(io.BytesIO(spreadsheet.export_certificates_xlsx(certs, clock.today())))
    ws = wb["Certificates"]
    header = [c.value for c in ws[1]]
    assert header[0] == "Certificate Number"
    assert ws.max_row == 2
    assert ws.cell(row=2, column=1).value == "FA-202406-0001"

    rows = list(csv.reader(io.StringIO(spreadsheet.export_certificates_csv(certs, clock.today()))))
    assert len(rows) == 2
    name_index = rows[0].index("Employee Name")
    assert rows[1][name_index].startswith("'=")


def test_compliance_report_workbook(db, clock):
    employee = make_employee(db)
    training_type = make_training_type(db)
    make_certificate(db, clock, employee, training_type)
    today = clock.today()

    content = spreadsheet.export_compliance_report_xlsx(
        reports.dashboard(db, today),
        reports.departments_report(db, today),
        reports.training_types_report(db, today),
        reports.employees_report(db, today)["employees"],
    )
    wb = load_workbook(io.BytesIO(content))
    assert wb.sheetnames == ["Summary", "Departments", "Training Types", "Employees"]
    assert wb["Employees"].cell(row=2, column=3).value == "compliant"
