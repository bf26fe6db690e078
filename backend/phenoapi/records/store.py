"""Patient record store: users, patient records and the consent catalogue.

Records are kept in memory and optionally written back to a JSON file after
each mutation. Mutations on one record are serialized with a per-record lock.
"""
import json
import logging
import threading
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import Iterator, Optional

from pydantic import BaseModel, Field

from phenoapi.config import settings
from phenoapi.errors import NotFoundError

logger = logging.getLogger(__name__)

WIKI_PREFIX = "xwiki:"
SPACE_PREFIX = "XWiki."


class AccessLevel(IntEnum):
    NONE = 0
    VIEW = 1
    EDIT = 2
    MANAGE = 3
    OWNER = 4

    @classmethod
    def parse(cls, value: "str | int | AccessLevel") -> "AccessLevel":
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(value)


def local_username(value: str) -> str:
    """'xwiki:XWiki.jdoe', 'XWiki.jdoe' and 'jdoe' all become 'jdoe'."""
    value = (value or "").strip()
    if value.startswith(WIKI_PREFIX):
        value = value[len(WIKI_PREFIX):]
    if value.startswith(SPACE_PREFIX):
        value = value[len(SPACE_PREFIX):]
    return value


def qualified_username(value: str) -> str:
    local = local_username(value)
    return f"{WIKI_PREFIX}{SPACE_PREFIX}{local}" if local else ""


class User(BaseModel):
    username: str
    name: str = ""
    email: Optional[str] = None
    admin: bool = False

    @property
    def qualified_id(self) -> str:
        return qualified_username(self.username)


class ConsentDefinition(BaseModel):
    id: str
    label: str
    description: str = ""
    is_required: bool = False
    affected_fields: list[str] = Field(default_factory=list)


class PatientRecord(BaseModel):
    id: str
    owner: str = ""
    collaborators: dict[str, AccessLevel] = Field(default_factory=dict)
    visibility: str = "private"  # private | protected | public
    granted_consents: set[str] = Field(default_factory=set)


DEFAULT_CONSENTS = [
    ConsentDefinition(
        id="real_consent",
        label="Patient has consented to the collection of their data",
        description="Required before any clinical data can be recorded.",
        is_required=True,
    ),
    ConsentDefinition(
        id="genetic",
        label="Patient has consented to the collection of genetic data",
        affected_fields=["genes", "variants", "rejectedGenes"],
    ),
    ConsentDefinition(
        id="share_history",
        label="Patient has consented to sharing their family history",
        affected_fields=["family_history"],
    ),
    ConsentDefinition(
        id="share_images",
        label="Patient has consented to sharing images and photos",
        affected_fields=["medical_photos"],
    ),
    ConsentDefinition(
        id="matching",
        label="Patient has consented to matching against other records",
        description="Allows the record to be compared with records on other servers.",
    ),
]


class PatientStore:
    def __init__(
        self,
        patients: list[PatientRecord] | None = None,
        users: list[User] | None = None,
        consents: list[ConsentDefinition] | None = None,
        path: Path | None = None,
    ):
        self.patients: dict[str, PatientRecord] = {}
        self.users: dict[str, User] = {}
        self.consents: dict[str, ConsentDefinition] = {
            c.id: c for c in (DEFAULT_CONSENTS if consents is None else consents)
        }
        self.path = path
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        for u in users or []:
            self.add_user(u)
        for p in patients or []:
            self.add_patient(p)

    def add_user(self, user: User):
        self.users[local_username(user.username)] = user

    def add_patient(self, record: PatientRecord):
        record.owner = qualified_username(record.owner)
        record.collaborators = {qualified_username(k): v for k, v in record.collaborators.items()}
        self.patients[record.id] = record

    def get_user(self, username: str) -> User | None:
        return self.users.get(local_username(username))

    def get_record(self, patient_id: str) -> PatientRecord:
        record = self.patients.get(patient_id)
        if record is None:
            raise NotFoundError(f"Patient record {patient_id} not found")
        return record

    def _lock_for(self, patient_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(patient_id)
            if lock is None:
                lock = self._locks[patient_id] = threading.Lock()
            return lock

    @contextmanager
    def locked(self, patient_id: str) -> Iterator[PatientRecord]:
        """
        Hold the record's lock and yield a working copy of it.

        The copy replaces the stored record when the block exits cleanly and,
        with persistence on, only if saving succeeds; otherwise the previous
        record stays in place.
        """
        self.get_record(patient_id)
        with self._lock_for(patient_id):
            current = self.patients[patient_id]
            draft = current.model_copy(deep=True)
            yield draft
            self.patients[patient_id] = draft
            if settings.persist_patients and self.path is not None:
                try:
                    self.save()
                except Exception:
                    self.patients[patient_id] = current
                    logger.error(f"Could not persist patient {patient_id}; change rolled back.")
                    raise

    def snapshot(self, patient_id: str) -> PatientRecord:
        """A consistent copy of the record, taken under its lock."""
        self.get_record(patient_id)
        with self._lock_for(patient_id):
            return self.patients[patient_id].model_copy(deep=True)

    def save(self, path: Path | None = None):
        path = path or self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "users": [u.model_dump() for u in self.users.values()],
            "patients": [
                {
                    **p.model_dump(exclude={"collaborators", "granted_consents"}),
                    "collaborators": {k: v.name.lower() for k, v in p.collaborators.items()},
                    "granted_consents": sorted(p.granted_consents),
                }
                for p in self.patients.values()
            ],
        }
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        logger.debug(f"Patient store saved → {path}")

    @classmethod
    def load(cls, patients_file: Path | None = None, consents_file: Path | None = None) -> "PatientStore":
        """Load users, records and the consent catalogue; missing files give an empty store."""
        patients_file = patients_file or settings.patients_file
        consents_file = consents_file or settings.consents_file

        consents = None
        if consents_file.exists():
            with open(consents_file, encoding="utf-8") as f:
                consents = [ConsentDefinition(**c) for c in json.load(f).get("consents", [])]
        else:
            logger.info("No consent catalogue file; using default consents.")

        users: list[User] = []
        patients: list[PatientRecord] = []
        if patients_file.exists():
            with open(patients_file, encoding="utf-8") as f:
                data = json.load(f)
            users = [User(**u) for u in data.get("users", [])]
            for p in data.get("patients", []):
                collaborators = {k: AccessLevel.parse(v) for k, v in p.pop("collaborators", {}).items()}
                patients.append(PatientRecord(**p, collaborators=collaborators))
        else:
            logger.warning(f"Patients file not found at {patients_file}; starting with an empty store.")

        store = cls(patients=patients, users=users, consents=consents, path=patients_file)
        logger.info(f"Patient store loaded: {len(store.patients)} records, {len(store.users)} users")
        return store
