from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import Actor, get_current_actor, require_roles
from ..clock import Clock, get_clock
from ..db import get_db
from ..errors import NotFoundError, UniquenessConflictError, ValidationError
from ..models.models import TrainingProvider
from ..schemas.training import ProviderCreate, ProviderUpdate, ProviderResponse
from ..services.audit import log_event
from ..services.status import accreditation_status
from .common import HR_ROLE, parse_uuid

router = APIRouter(prefix="/providers", tags=["providers"])


def _get_provider(db: Session, provider_id: str) -> TrainingProvider:
    provider = db.query(TrainingProvider).filter(TrainingProvider.id == parse_uuid(provider_id, "provider ID")).first()
    if not provider:
        raise NotFoundError(f"Provider {provider_id} not found")
    return provider


def _serialize(provider: TrainingProvider, clock: Clock) -> ProviderResponse:
    item = ProviderResponse.model_validate(provider)
    if provider.accreditation_expiry:
        item.accreditation_status = accreditation_status(provider.accreditation_expiry, clock.today()).value
    return item


def _validate(db: Session, data: dict, exclude_id=None) -> None:
    start, end = data.get("contract_start_date"), data.get("contract_end_date")
    if start and end and end < start:
        raise ValidationError({"contract_end_date": "Contract end must not be before its start"})
    if data.get("code"):
        query = db.query(TrainingProvider.id).filter(TrainingProvider.code == data["code"])
        if exclude_id:
            query = query.filter(TrainingProvider.id != exclude_id)
        if query.first():
            raise UniquenessConflictError(f"Provider code {data['code']} already exists", {"code": "Code already exists"})


@router.get("", response_model=list[ProviderResponse])
def list_providers(
    active_only: bool = Query(False),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    query = db.query(TrainingProvider)
    if active_only:
        query = query.filter(TrainingProvider.is_active == True)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter((TrainingProvider.name.ilike(term)) | (TrainingProvider.code.ilike(term)))
    return [_serialize(p, clock) for p in query.order_by(TrainingProvider.name).all()]


@router.post("", response_model=ProviderResponse, status_code=201)
def create_provider(
    payload: ProviderCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    data = payload.model_dump()
    _validate(db, data)
    provider = TrainingProvider(**data)
    db.add(provider)
    db.flush()
    log_event(db, "CREATE", "provider", provider.id, actor.id, {"name": provider.name})
    db.commit()
    db.refresh(provider)
    return _serialize(provider, clock)


@router.get("/{provider_id}", response_model=ProviderResponse)
def get_provider(
    provider_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _: Actor = Depends(get_current_actor),
):
    return _serialize(_get_provider(db, provider_id), clock)


@router.patch("/{provider_id}", response_model=ProviderResponse)
def update_provider(
    provider_id: str,
    payload: ProviderUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    provider = _get_provider(db, provider_id)
    changes = payload.model_dump(exclude_unset=True)
    merged = {
        "contract_start_date": changes.get("contract_start_date", provider.contract_start_date),
        "contract_end_date": changes.get("contract_end_date", provider.contract_end_date),
        "code": changes.get("code"),
    }
    _validate(db, merged, exclude_id=provider.id)
    for key, value in changes.items():
        setattr(provider, key, value)
    log_event(db, "UPDATE", "provider", provider.id, actor.id, changes=changes)
    db.commit()
    db.refresh(provider)
    return _serialize(provider, clock)


@router.delete("/{provider_id}")
def deactivate_provider(
    provider_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_roles(HR_ROLE)),
):
    """Providers are referenced by historical certificates, so they are only deactivated."""
    provider = _get_provider(db, provider_id)
    provider.is_active = False
    log_event(db, "DEACTIVATE", "provider", provider.id, actor.id)
    db.commit()
    return {"status": "ok"}
