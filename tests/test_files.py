import re

import pytest

from certhub.errors import ValidationError, UniquenessConflictError
from certhub.models.models import CertificateFile
from certhub.services import files as file_service
from certhub.services.certificates import get_certificate

from .conftest import make_certificate, make_employee, make_training_type


PDF = b"%PDF-1.4 first scan"
PDF_2 = b"%PDF-1.4 second scan"


@pytest.fixture()
def pair(db):
    return make_employee(db), make_training_type(db)


def _upload(db, storage, clock, employee, training_type, content=PDF, **kwargs):
    kwargs.setdefault("filename", "first-aid.pdf")
    kwargs.setdefault("content_type", "application/pdf")
    return file_service.upload_certificate_file(
        db, storage, clock, employee.id, training_type.id, content=content, actor="hr-1", **kwargs
    )


def test_upload_stores_versioned_file(db, storage, clock, pair):
    employee, training_type = pair
    cert = make_certificate(db, clock, employee, training_type)
    record = _upload(db, storage, clock, employee, training_type, certificate_id=cert.id)

    assert record.version_number == 1
    assert record.is_latest is True
    assert record.stored_filename == "v1_2024-01-01_2025-01-01.pdf"
    assert re.fullmatch(r"certificates/first-aid/employee-e001/[0-9a-f]{8}_v1_2024-01-01_2025-01-01\.pdf", record.storage_key)
    assert storage.get(record.storage_key) == PDF
    assert get_certificate(db, cert.id).attachments[0]["hash"] == record.file_hash


def test_new_upload_becomes_latest(db, storage, clock, pair):
    employee, training_type = pair
    first = _upload(db, storage, clock, employee, training_type)
    second = _upload(db, storage, clock, employee, training_type, content=PDF_2)

    db.refresh(first)
    assert second.version_number == 2
    assert second.is_latest is True
    assert first.is_latest is False
    latest = file_service.list_certificate_files(db, employee.id, latest_only=True)
    assert [f.id for f in latest] == [second.id]


def test_duplicate_content_is_rejected(db, storage, clock, pair):
    employee, training_type = pair
    _upload(db, storage, clock, employee, training_type)
    with pytest.raises(UniquenessConflictError):
        _upload(db, storage, clock, employee, training_type, filename="copy.pdf")
    assert db.query(CertificateFile).count() == 1


def test_unsupported_type_is_rejected(db, storage, clock, pair):
    employee, training_type = pair
    with pytest.raises(ValidationError) as exc:
        _upload(db, storage, clock, employee, training_type, filename="run.exe", content_type="application/x-msdownload")
    assert "content_type" in exc.value.errors


def test_empty_file_is_rejected(db, storage, clock, pair):
    employee, training_type = pair
    with pytest.raises(ValidationError):
        _upload(db, storage, clock, employee, training_type, content=b"")


def test_deleting_latest_promotes_previous_version(db, storage, clock, pair):
    employee, training_type = pair
    first = _upload(db, storage, clock, employee, training_type)
    second = _upload(db, storage, clock, employee, training_type, content=PDF_2)
    key = second.storage_key

    file_service.delete_certificate_file(db, storage, second.id, actor="hr-1")

    db.refresh(first)
    assert first.is_latest is True
    assert not storage.exists(key)
    assert storage.exists(first.storage_key)


def test_download(db, storage, clock, pair):
    employee, training_type = pair
    record = _upload(db, storage, clock, employee, training_type)
    found, content = file_service.download_certificate_file(db, storage, record.id)
    assert found.id == record.id
    assert content == PDF


def test_background_check_files(db, storage, clock, pair):
    employee, _ = pair
    entry = file_service.upload_background_check_file(
        db, storage, clock, employee.id, "Police Check.pdf", PDF, "application/pdf", actor="hr-1"
    )
    assert re.fullmatch(r"background_checks/employee-e001/2024-06-01_[0-9a-f]{8}_police-check\.pdf", entry["path"])
    with pytest.raises(UniquenessConflictError):
        file_service.upload_background_check_file(db, storage, clock, employee.id, "again.pdf", PDF, "application/pdf")

    file_service.delete_background_check_file(db, storage, employee.id, entry["hash"], actor="hr-1")
    db.refresh(employee)
    assert employee.background_check_files == []
    assert not storage.exists(entry["path"])


def test_racing_upload_keeps_the_stored_version(db, storage, clock, pair, monkeypatch):
    employee, training_type = pair
    first = _upload(db, storage, clock, employee, training_type)
    # Both uploads read the same latest version before either commits
    monkeypatch.setattr(file_service, "_latest_version", lambda *args: 0)

    with pytest.raises(UniquenessConflictError):
        _upload(db, storage, clock, employee, training_type, content=PDF_2)

    db.refresh(first)
    assert first.is_latest is True
    assert storage.get(first.storage_key) == PDF
    assert db.query(CertificateFile).count() == 1


def test_background_files_with_the_same_name_are_kept_apart(db, storage, clock, pair):
    employee, _ = pair
    first = file_service.upload_background_check_file(
        db, storage, clock, employee.id, "check.pdf", PDF, "application/pdf", actor="hr-1"
    )
    second = file_service.upload_background_check_file(
        db, storage, clock, employee.id, "check.pdf", PDF_2, "application/pdf", actor="hr-1"
    )
    assert first["path"] != second["path"]
    assert storage.get(first["path"]) == PDF
