from datetime import date

from certhub.auth.security import _create_token

from .conftest import make_certificate, make_department, make_employee, make_training_type


def _create_cert(client, hr_headers, employee, training_type, **extra):
    payload = {
        "employee_id": str(employee.id),
        "training_type_id": str(training_type.id),
        "issue_date": "2024-01-01",
    }
    payload.update(extra)
    return client.post("/certificates", json=payload, headers=hr_headers)


def test_healthz(client):
    assert client.get("/healthz").json()["status"] == "ok"


def test_requires_token(client):
    res = client.get("/certificates")
    assert res.status_code == 401


def test_rejects_expired_token(client):
    token = _create_token("hr-1", -10, extra={"roles": ["hr_admin"]})
    res = client.get("/certificates", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Token expired"


def test_writes_require_hr_role(client, db, viewer_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)
    res = _create_cert(client, viewer_headers, employee, training_type)
    assert res.status_code == 403
    assert client.get("/certificates", headers=viewer_headers).status_code == 200


def test_create_and_list_certificate(client, db, hr_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)

    res = _create_cert(client, hr_headers, employee, training_type)
    assert res.status_code == 201
    body = res.json()
    assert body["certificate_number"] == "FA-202406-0001"
    assert body["expiry_date"] == "2025-01-01"
    assert body["status"] == "active"
    assert body["compliance_status"] == "compliant"
    assert body["days_until_expiry"] == 214
    assert body["employee_name"] == "Ana Silva"

    listing = client.get("/certificates", params={"employee_id": str(employee.id)}, headers=hr_headers).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == body["id"]


def test_validation_error_shape(client, db, hr_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)

    res = _create_cert(client, hr_headers, employee, training_type, issue_date="2024-07-01", score=150)
    assert res.status_code == 422
    body = res.json()
    assert body["type"] == "validation_error"
    assert set(body["errors"]) >= {"issue_date", "score"}
    assert body["request_id"] == res.headers["X-Request-ID"]


def test_invalid_id_is_bad_request(client, hr_headers):
    res = client.get("/certificates/not-a-uuid", headers=hr_headers)
    assert res.status_code == 400


def test_unknown_certificate_is_404(client, hr_headers):
    res = client.get("/certificates/00000000-0000-0000-0000-000000000000", headers=hr_headers)
    assert res.status_code == 404
    assert res.json()["type"] == "not_found"


def test_lifecycle_over_http(client, db, hr_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)
    cert = _create_cert(client, hr_headers, employee, training_type).json()

    res = client.post(f"/certificates/{cert['id']}/renew", json={"expected_version": 99}, headers=hr_headers)
    assert res.status_code == 409
    assert res.json()["type"] == "concurrency_conflict"

    renewed = client.post(f"/certificates/{cert['id']}/renew", json={}, headers=hr_headers)
    assert renewed.status_code == 201
    assert renewed.json()["renewal_generation"] == 2

    res = client.post(f"/certificates/{cert['id']}/revoke", json={"reason": "Too late"}, headers=hr_headers)
    assert res.status_code == 409
    assert res.json()["type"] == "invalid_state"

    chain = client.get(f"/certificates/{renewed.json()['id']}/chain", headers=hr_headers).json()
    assert [c["renewal_generation"] for c in chain] == [1, 2]

    history = client.get(f"/certificates/{cert['id']}/history", headers=hr_headers).json()
    assert {h["action"] for h in history} >= {"ISSUE", "RENEW"}


def test_public_verification(client, db, clock):
    employee = make_employee(db)
    training_type = make_training_type(db)
    cert = make_certificate(db, clock, employee, training_type)

    res = client.get(f"/verify/{cert.verification_code}")
    assert res.status_code == 200
    body = res.json()
    assert body["found"] is True
    assert body["valid"] is True
    assert body["employee_name"] == "Ana Silva"

    body = client.get("/verify/cert-unknown1").json()
    assert body["code"] == "CERT-UNKNOWN1"
    assert body["found"] is False
    assert body["valid"] is False


def test_sweep_endpoint(client, db, clock, hr_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)
    make_certificate(db, clock, employee, training_type)

    clock.set(date(2025, 2, 1))
    assert client.post("/certificates/sweep", headers=hr_headers).json() == {"changed": 1}
    assert client.post("/certificates/sweep", headers=hr_headers).json() == {"changed": 0}


def test_dashboard(client, db, clock, hr_headers):
    department = make_department(db)
    employee = make_employee(db, department=department)
    training_type = make_training_type(db)
    make_certificate(db, clock, employee, training_type)
    make_certificate(db, clock, employee, training_type, issue_date=date(2023, 1, 1))

    body = client.get("/reports/dashboard", headers=hr_headers).json()
    assert body["summary"]["total"] == 2
    assert body["summary"]["compliant"] == 1
    assert body["summary"]["expired"] == 1
    assert body["summary"]["compliance_rate"] == 50.0
    assert body["compliance_grade"] == "D"
    assert body["coverage"]["coverage_rate"] == 100.0

    departments = client.get("/reports/departments", headers=hr_headers).json()
    assert departments[0]["department_code"] == "OPS"
    assert departments[0]["compliant_employees"] == 1


def test_upload_and_download_file(client, db, hr_headers):
    employee = make_employee(db)
    training_type = make_training_type(db)

    res = client.post(
        "/files",
        data={"employee_id": str(employee.id), "training_type_id": str(training_type.id)},
        files={"file": ("scan.pdf", b"%PDF-1.4 scan", "application/pdf")},
        headers=hr_headers,
    )
    assert res.status_code == 201
    file_id = res.json()["id"]

    download = client.get(f"/files/{file_id}/download", headers=hr_headers)
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 scan"


def test_import_and_export(client, db, hr_headers):
    make_training_type(db)
    content = b"employee_number,name,department\nE200,Dewi Lestari,Finance\n"
    res = client.post(
        "/import-export/employees",
        files={"file": ("staff.csv", content, "text/csv")},
        headers=hr_headers,
    )
    assert res.status_code == 200
    assert res.json()["created"] == 1

    export = client.get("/import-export/certificates", params={"fmt": "csv"}, headers=hr_headers)
    assert export.status_code == 200
    assert export.text.splitlines()[0].startswith("Certificate Number")


def test_department_and_employee_crud(client, hr_headers):
    dept = client.post("/departments", json={"name": "Warehouse", "code": "wh"}, headers=hr_headers)
    assert dept.status_code == 201
    assert dept.json()["code"] == "WH"
    dept_id = dept.json()["id"]

    dup = client.post("/departments", json={"name": "Other", "code": "WH"}, headers=hr_headers)
    assert dup.status_code == 409

    emp = client.post(
        "/employees",
        json={"employee_number": "E300", "name": "Joko Widodo", "department_id": dept_id, "email": "joko@example.com"},
        headers=hr_headers,
    )
    assert emp.status_code == 201
    assert emp.json()["department_name"] == "Warehouse"

    listing = client.get("/departments", headers=hr_headers).json()
    assert listing[0]["employee_count"] == 1

    assert client.delete(f"/departments/{dept_id}", headers=hr_headers).status_code == 409

    bad = client.post("/employees", json={"employee_number": "E301", "name": "X", "email": "nope"}, headers=hr_headers)
    assert bad.status_code == 422
    assert "email" in bad.json()["errors"]


def test_employee_with_certificates_cannot_be_deleted(client, db, clock, hr_headers):
    employee = make_employee(db)
    make_certificate(db, clock, employee, make_training_type(db))
    res = client.delete(f"/employees/{employee.id}", headers=hr_headers)
    assert res.status_code == 409


def test_provider_delete_deactivates(client, hr_headers):
    res = client.post(
        "/providers",
        json={"name": "Safety First", "code": "SF", "accreditation_expiry": "2024-06-20"},
        headers=hr_headers,
    )
    assert res.status_code == 201
    assert res.json()["accreditation_status"] == "expiring_soon"
    provider_id = res.json()["id"]

    assert client.delete(f"/providers/{provider_id}", headers=hr_headers).status_code == 200
    assert client.get(f"/providers/{provider_id}", headers=hr_headers).json()["is_active"] is False
