from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..db import get_db
from ..errors import NotFoundError, UniquenessConflictError, InvalidStateError
from ..models.models import TrainingType, Certificate
from ..schemas.training import TrainingTypeCreate, TrainingTypeUpdate, TrainingTypeResponse
from ..services.audit import log_event
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/training-types", tags=["training-types"])


def _get_training_type(db: Session, training_type_id: str) -> TrainingType:
    training_type = db.query(TrainingType).filter(
        TrainingType.id == parse_uuid(training_type_id, "training type ID")
    ).first()
    if not training_type:
        raise NotFoundError(f"Training type {training_type_id} not found")
    return training_type


def _check_code(db: Session, code: str, exclude_id=None) -> None:
    query = db.query(TrainingType.id).filter(func.upper(TrainingType.code) == code.upper())
    if exclude_id:
        query = query.filter(TrainingType.id != exclude_id)
    if query.first():
        raise UniquenessConflictError(f"Training type code {code} already exists", {"code": "Code already exists"})


@router.get("", response_model=list[TrainingTypeResponse])
def list_training_types(
    category: Optional[str] = Query(None),
    mandatory: Optional[bool] = Query(None),
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
    _: Actor = Depends(get_current_actor),
):
    query = db.query(TrainingType)
    if category:
        query = query.filter(TrainingType.category == category)
    if mandatory is not None:
        query = query.filter(TrainingType.is_mandatory == mandatory)
    if active_only:
        query = query.filter(TrainingType.is_active == True)
    return query.order_by(TrainingType.name).all()


@router.post("", response_model=TrainingTypeResponse, status_code=201)
def create_training_type(
    payload: TrainingTypeCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    _check_code(db, payload.code)
    training_type = TrainingType(**payload.model_dump())
    training_type.code = training_type.code.upper()
    db.add(training_type)
    db.flush()
    log_event(db, "CREATE", "training_type", training_type.id, actor.id, {"code": training_type.code})
    db.commit()
    db.refresh(training_type)
    return training_type


@router.get("/{training_type_id}", response_model=TrainingTypeResponse)
def get_training_type(training_type_id: str, db: Session = Depends(get_db), _: Actor = Depends(get_current_actor)):
    return _get_training_type(db, training_type_id)


@router.patch("/{training_type_id}", response_model=TrainingTypeResponse)
def update_training_type(
    training_type_id: str,
    payload: TrainingTypeUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    """Changes apply to new certificates; existing expiry dates are left as issued."""
    training_type = _get_training_type(db, training_type_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("code"):
        _check_code(db, changes["code"], exclude_id=training_type.id)
        changes["code"] = changes["code"].upper()
    for key, value in changes.items():
        setattr(training_type, key, value)
    log_event(db, "UPDATE", "training_type", training_type.id, actor.id, changes=changes)
    db.commit()
    db.refresh(training_type)
    return training_type


@router.delete("/{training_type_id}")
def delete_training_type(
    training_type_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    training_type = _get_training_type(db, training_type_id)
    if db.query(Certificate.id).filter(Certificate.training_type_id == training_type.id).first():
        raise InvalidStateError("Training type has certificates; deactivate it instead")
    log_event(db, "DELETE", "training_type", training_type.id, actor.id, {"code": training_type.code})
    db.delete(training_type)
    db.commit()
    return {"status": "ok"}
