"""HTTP handlers and the route table that registers them."""
import json
import logging

from fastapi import APIRouter, Query, Request
from starlette.concurrency import run_in_threadpool

from phenoapi.config import settings
from phenoapi.diagnosis.script import DiagnosisScriptService
from phenoapi.errors import BadRequestError, ForbiddenError
from phenoapi.models import Consent, OwnerUpdate, StatusMessage, SuggestResponse, UserSummary
from phenoapi.records.service import PatientAccessService
from phenoapi.records.store import User

logger = logging.getLogger(__name__)

USER_HEADER = "X-User"


def _access(request: Request) -> PatientAccessService:
    return request.app.state.access_service


def _diagnosis(request: Request) -> DiagnosisScriptService:
    return request.app.state.script_service


def get_caller(request: Request) -> User | None:
    """The user named in the X-User header; None when absent or unknown."""
    username = request.headers.get(USER_HEADER, "").strip()
    if not username:
        return None
    return _access(request).store.get_user(username)


async def _read_owner(request: Request) -> str:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/json":
        try:
            body = json.loads(await request.body() or b"null")
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequestError("Request body is not valid JSON")
        if not isinstance(body, dict) or not isinstance(body.get("id"), str):
            raise BadRequestError('JSON body must contain an "id" string')
        return OwnerUpdate(**body).id
    if content_type == "application/x-www-form-urlencoded":
        form = await request.form()
        owner = form.get("owner")
        if not isinstance(owner, str):
            raise BadRequestError('Form must contain an "owner" field')
        return owner
    raise BadRequestError(f"Unsupported content type {content_type or '(none)'}")


# Owner


def get_owner(patient_id: str, request: Request) -> UserSummary:
    """Owner of a patient record; requires view access."""
    return _access(request).get_owner(patient_id, get_caller(request))


async def put_owner(patient_id: str, request: Request) -> StatusMessage:
    """Replace the owner from a JSON {"id": ...} or form-encoded owner=... body."""
    owner = await _read_owner(request)
    summary = await run_in_threadpool(_access(request).set_owner, patient_id, owner, get_caller(request))
    return StatusMessage(message=f"Owner of {patient_id} set to {summary.id}")


# Consents


def get_consents(patient_id: str, request: Request) -> list[Consent]:
    return _access(request).list_consents(patient_id, get_caller(request))


def grant_consent(patient_id: str, consent_id: str, request: Request) -> StatusMessage:
    changed = _access(request).grant_consent(patient_id, consent_id, get_caller(request))
    message = "granted" if changed else "already granted"
    return StatusMessage(message=f"Consent {consent_id} {message}")


def revoke_consent(patient_id: str, consent_id: str, request: Request) -> StatusMessage:
    changed = _access(request).revoke_consent(patient_id, consent_id, get_caller(request))
    message = "revoked" if changed else "not granted"
    return StatusMessage(message=f"Consent {consent_id} {message}")


# Diagnosis


def suggest_diagnoses(
    request: Request,
    phenotype: list[str] = Query(default=[]),
    nonstandard_phenotype: list[str] = Query(default=[]),
    limit: int = Query(default=settings.default_limit),
) -> SuggestResponse:
    """Ranked diagnoses for the given phenotype term ids and free-text phenotypes."""
    if get_caller(request) is None:
        raise ForbiddenError("Diagnosis suggestions require a known user")
    if limit <= 0:
        raise BadRequestError("limit must be a positive integer")
    limit = min(limit, settings.max_limit)
    diagnoses = _diagnosis(request).get(phenotype, nonstandard_phenotype, limit)
    return SuggestResponse(diagnoses=diagnoses)


ROUTES = [
    ("GET", "/patients/{patient_id}/permissions/owner", get_owner, UserSummary),
    ("PUT", "/patients/{patient_id}/permissions/owner", put_owner, StatusMessage),
    ("GET", "/patients/{patient_id}/consents", get_consents, list[Consent]),
    ("PUT", "/patients/{patient_id}/consents/grant/{consent_id}", grant_consent, StatusMessage),
    ("PUT", "/patients/{patient_id}/consents/revoke/{consent_id}", revoke_consent, StatusMessage),
    ("GET", "/diagnosis/suggest", suggest_diagnoses, SuggestResponse),
]


def build_router() -> APIRouter:
    router = APIRouter()
    for method, path, handler, response_model in ROUTES:
        router.add_api_route(path, handler, methods=[method], response_model=response_model)
    return router
