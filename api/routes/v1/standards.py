"""
api/routes/v1/standards.py -- Reference standard REST endpoints.

Routes:
  GET    /api/v1/reference-standards             -- list (any authenticated user)
  GET    /api/v1/reference-standards/{id}        -- detail with rules (any authenticated user)
  POST   /api/v1/reference-standards             -- create header (ADMIN, PROFESSOR)
  PATCH  /api/v1/reference-standards/{id}        -- update header fields (ADMIN, PROFESSOR)
  DELETE /api/v1/reference-standards/{id}        -- delete with its rules (ADMIN, PROFESSOR)
  POST   /api/v1/reference-standards/{id}/rules  -- replace the full rule set (ADMIN, PROFESSOR)

Rule replacement is all-or-nothing (see StandardsStore.replace_rules). A body
whose "rules" is not a list fails schema validation before any write.
"""

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    RulesReplace,
    StandardCreate,
    StandardPatch,
    StandardResponse,
)
from auth.audit import AuditSink
from auth.dependencies import client_ip, get_current_user, require_roles
from auth.errors import InputValidationError, NotFoundError
from auth.models import AuditAction, Role, Severity, User
from standards.models import ReferenceStandard
from standards.store import StandardsStore

router = APIRouter(prefix="/reference-standards", dependencies=[Depends(get_current_user)])

_editors = require_roles(Role.ADMIN, Role.PROFESSOR)


def _store(request: Request) -> StandardsStore:
    return request.app.state.standards_store


def _load(store: StandardsStore, standard_id: int) -> ReferenceStandard:
    standard = store.get_standard(standard_id)
    if standard is None:
        raise NotFoundError("Reference standard not found.")
    return standard


@router.get("", response_model=list[StandardResponse])
def list_standards(request: Request) -> list[StandardResponse]:
    return [StandardResponse.from_standard(s) for s in _store(request).list_standards()]


@router.get("/{standard_id}", response_model=StandardResponse)
def get_standard(request: Request, standard_id: int) -> StandardResponse:
    return StandardResponse.from_standard(_load(_store(request), standard_id), with_rules=True)


@router.post("", response_model=StandardResponse, status_code=201)
def create_standard(
    request: Request,
    body: StandardCreate,
    current_user: User = Depends(_editors),
) -> StandardResponse:
    store = _store(request)
    standard_id = store.create_standard(
        ReferenceStandard(
            name=body.name,
            description=body.description,
            category=body.category,
            is_active=body.is_active,
        )
    )
    return StandardResponse.from_standard(store.get_standard(standard_id), with_rules=True)


@router.patch("/{standard_id}", response_model=StandardResponse)
def update_standard(
    request: Request,
    standard_id: int,
    body: StandardPatch,
    current_user: User = Depends(_editors),
) -> StandardResponse:
    """Update name, description, category or is_active. Rules are untouched."""
    store = _store(request)
    _load(store, standard_id)
    updates = body.model_dump(exclude_unset=True)
    if not updates:
        raise InputValidationError("No fields to update.")
    store.update_standard(standard_id, **updates)
    return StandardResponse.from_standard(store.get_standard(standard_id), with_rules=True)


@router.delete("/{standard_id}", response_model=MessageResponse)
def delete_standard(
    request: Request,
    standard_id: int,
    current_user: User = Depends(_editors),
) -> MessageResponse:
    if not _store(request).delete_standard(standard_id):
        raise NotFoundError("Reference standard not found.")
    return MessageResponse(message="Reference standard deleted.")


@router.post("/{standard_id}/rules", response_model=StandardResponse)
def replace_rules(
    request: Request,
    standard_id: int,
    body: RulesReplace,
    current_user: User = Depends(_editors),
) -> StandardResponse:
    """Replace every rule of a standard in one transaction.

    On any failure the previous rule set stays in place and the error
    propagates (500 via the generic handler).
    """
    store = _store(request)
    before = _load(store, standard_id)
    try:
        count = store.replace_rules(standard_id, [r.to_rule() for r in body.rules])
    except LookupError as exc:
        raise NotFoundError("Reference standard not found.") from exc

    audit: AuditSink = request.app.state.audit
    audit.record_for(
        current_user,
        AuditAction.REFERENCE_RULES_REPLACED,
        severity=Severity.INFO,
        entity_type="reference_standards",
        entity_id=str(standard_id),
        ip_address=client_ip(request),
        metadata={"previousRuleCount": len(before.rules), "ruleCount": count},
    )
    return StandardResponse.from_standard(store.get_standard(standard_id), with_rules=True)
