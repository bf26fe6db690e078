"""Owner and consent operations on patient records, gated by access level."""
import logging

from phenoapi.errors import BadRequestError, ForbiddenError, NotFoundError
from phenoapi.models import Consent, UserSummary
from phenoapi.records.store import (
    AccessLevel,
    PatientRecord,
    PatientStore,
    User,
    local_username,
    qualified_username,
)

logger = logging.getLogger(__name__)


def access_level(record: PatientRecord, caller: User | None) -> AccessLevel:
    """Highest access level ``caller`` holds on ``record``."""
    if caller is None:
        return AccessLevel.VIEW if record.visibility == "public" else AccessLevel.NONE
    if caller.qualified_id == record.owner:
        return AccessLevel.OWNER
    level = AccessLevel.NONE
    if caller.admin:
        level = AccessLevel.MANAGE
    level = max(level, record.collaborators.get(caller.qualified_id, AccessLevel.NONE))
    if record.visibility == "public":
        level = max(level, AccessLevel.VIEW)
    return level


class PatientAccessService:
    def __init__(self, store: PatientStore):
        self.store = store

    def _require(self, record: PatientRecord, caller: User | None, needed: AccessLevel):
        if access_level(record, caller) < needed:
            who = caller.username if caller else "anonymous"
            raise ForbiddenError(f"User {who} lacks {needed.name.lower()} access to patient {record.id}")

    def _summary(self, username: str) -> UserSummary:
        user = self.store.get_user(username)
        if user is None:
            return UserSummary(id=qualified_username(username), name=local_username(username))
        return UserSummary(id=user.qualified_id, name=user.name or user.username, email=user.email)

    # Owner

    def get_owner(self, patient_id: str, caller: User | None) -> UserSummary:
        record = self.store.snapshot(patient_id)
        self._require(record, caller, AccessLevel.VIEW)
        if not record.owner:
            raise NotFoundError(f"Patient record {patient_id} has no owner")
        return self._summary(record.owner)

    def set_owner(self, patient_id: str, username: str, caller: User | None) -> UserSummary:
        """Replace the owner. Accepts a fully qualified or a local username."""
        with self.store.locked(patient_id) as record:
            self._require(record, caller, AccessLevel.EDIT)
            if not local_username(username):
                raise BadRequestError("Owner username must not be empty")
            new_owner = self.store.get_user(username)
            if new_owner is None:
                raise BadRequestError(f"Unknown user {username}")
            previous = record.owner
            record.owner = new_owner.qualified_id
        logger.info(f"Owner of patient {patient_id} changed: {previous or '-'} → {new_owner.qualified_id}")
        return self._summary(new_owner.username)

    # Consents

    def list_consents(self, patient_id: str, caller: User | None) -> list[Consent]:
        record = self.store.snapshot(patient_id)
        self._require(record, caller, AccessLevel.VIEW)
        return [
            Consent(
                **definition.model_dump(),
                status="yes" if definition.id in record.granted_consents else "no",
            )
            for definition in self.store.consents.values()
        ]

    def _set_consent(self, patient_id: str, consent_id: str, caller: User | None, granted: bool) -> bool:
        with self.store.locked(patient_id) as record:
            self._require(record, caller, AccessLevel.EDIT)
            if consent_id not in self.store.consents:
                raise BadRequestError(f"Unknown consent {consent_id}")
            changed = (consent_id in record.granted_consents) != granted
            if granted:
                record.granted_consents.add(consent_id)
            else:
                record.granted_consents.discard(consent_id)
        if changed:
            action = "granted" if granted else "revoked"
            logger.info(f"Consent {consent_id} {action} on patient {patient_id}")
        return changed

    def grant_consent(self, patient_id: str, consent_id: str, caller: User | None) -> bool:
        """Grant a consent; granting an already granted consent is a no-op."""
        return self._set_consent(patient_id, consent_id, caller, granted=True)

    def revoke_consent(self, patient_id: str, consent_id: str, caller: User | None) -> bool:
        """Revoke a consent; revoking one that is not granted is a no-op."""
        return self._set_consent(patient_id, consent_id, caller, granted=False)
