"""Unit tests for the patient store, access levels, owner and consent operations."""
import json
import shutil
import threading

import pytest

from phenoapi.config import settings
from phenoapi.errors import BadRequestError, ForbiddenError, NotFoundError
from phenoapi.records.service import PatientAccessService, access_level
from phenoapi.records.store import (
    AccessLevel,
    DEFAULT_CONSENTS,
    PatientRecord,
    PatientStore,
    User,
    local_username,
    qualified_username,
)


@pytest.mark.parametrize(
    "value, local, qualified",
    [
        ("jdoe", "jdoe", "xwiki:XWiki.jdoe"),
        ("XWiki.jdoe", "jdoe", "xwiki:XWiki.jdoe"),
        ("xwiki:XWiki.jdoe", "jdoe", "xwiki:XWiki.jdoe"),
        ("  jdoe ", "jdoe", "xwiki:XWiki.jdoe"),
        ("", "", ""),
    ],
)
def test_username_normalisation(value, local, qualified):
    assert local_username(value) == local
    assert qualified_username(value) == qualified


def test_access_level_parse():
    assert AccessLevel.parse("edit") is AccessLevel.EDIT
    assert AccessLevel.parse(" View ") is AccessLevel.VIEW
    assert AccessLevel.parse(3) is AccessLevel.MANAGE


class TestStore:
    def test_load(self, store):
        assert set(store.patients) == {"P0000001", "P0000002", "P0000003"}
        assert store.patients["P0000001"].owner == "xwiki:XWiki.jdoe"
        assert store.patients["P0000001"].collaborators == {"xwiki:XWiki.asmith": AccessLevel.EDIT}
        assert [c.id for c in store.consents.values()] == [c.id for c in DEFAULT_CONSENTS]

    def test_get_user_accepts_any_form(self, store):
        assert store.get_user("xwiki:XWiki.asmith").name == "Alice Smith"
        assert store.get_user("asmith").name == "Alice Smith"
        assert store.get_user("ghost") is None

    def test_missing_record(self, store):
        with pytest.raises(NotFoundError):
            store.get_record("P9999999")

    def test_snapshot_is_a_copy(self, store):
        snapshot = store.snapshot("P0000001")
        snapshot.granted_consents.add("genetic")
        assert "genetic" not in store.patients["P0000001"].granted_consents

    def test_missing_files_give_empty_store(self, tmp_path):
        store = PatientStore.load(tmp_path / "patients.json", tmp_path / "consents.json")
        assert store.patients == {}
        assert len(store.consents) == len(DEFAULT_CONSENTS)

    def test_consent_catalogue_file(self, tmp_path, data_dir):
        consents_file = tmp_path / "consents.json"
        consents_file.write_text(json.dumps({"consents": [{"id": "research", "label": "Research use"}]}))
        store = PatientStore.load(data_dir / "patients.json", consents_file)
        assert list(store.consents) == ["research"]

    def test_persist_changes(self, tmp_path, data_dir, monkeypatch):
        patients_file = tmp_path / "patients.json"
        shutil.copy(data_dir / "patients.json", patients_file)
        monkeypatch.setattr(settings, "persist_patients", True)

        store = PatientStore.load(patients_file, tmp_path / "consents.json")
        service = PatientAccessService(store)
        service.grant_consent("P0000001", "genetic", store.get_user("jdoe"))
        service.set_owner("P0000002", "bwong", store.get_user("asmith"))

        reloaded = PatientStore.load(patients_file, tmp_path / "consents.json")
        assert reloaded.patients["P0000001"].granted_consents == {"real_consent", "genetic"}
        assert reloaded.patients["P0000001"].collaborators == {"xwiki:XWiki.asmith": AccessLevel.EDIT}
        assert reloaded.patients["P0000002"].owner == "xwiki:XWiki.bwong"

    def test_failed_save_keeps_previous_record(self, store, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "persist_patients", True)
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store.path = blocker / "patients.json"
        service = PatientAccessService(store)

        with pytest.raises(OSError):
            service.set_owner("P0000001", "bwong", store.get_user("jdoe"))
        assert store.patients["P0000001"].owner == "xwiki:XWiki.jdoe"

        with pytest.raises(OSError):
            service.grant_consent("P0000001", "genetic", store.get_user("jdoe"))
        assert store.patients["P0000001"].granted_consents == {"real_consent"}
        assert service.get_owner("P0000001", store.get_user("asmith")).id == "xwiki:XWiki.jdoe"

    def test_error_inside_locked_block_discards_changes(self, store):
        with pytest.raises(ValueError):
            with store.locked("P0000001") as record:
                record.owner = "xwiki:XWiki.bwong"
                raise ValueError("abort")
        assert store.patients["P0000001"].owner == "xwiki:XWiki.jdoe"


class TestAccessLevel:
    @pytest.mark.parametrize(
        "patient_id, username, expected",
        [
            ("P0000001", "jdoe", AccessLevel.OWNER),
            ("P0000001", "asmith", AccessLevel.EDIT),
            ("P0000001", "bwong", AccessLevel.NONE),
            ("P0000001", "admin", AccessLevel.MANAGE),
            ("P0000001", None, AccessLevel.NONE),
            ("P0000002", "jdoe", AccessLevel.VIEW),
            ("P0000003", "bwong", AccessLevel.VIEW),
            ("P0000003", None, AccessLevel.VIEW),
        ],
    )
    def test_levels(self, store, patient_id, username, expected):
        caller = store.get_user(username) if username else None
        assert access_level(store.get_record(patient_id), caller) == expected


class TestOwner:
    def test_get_owner(self, access_service, store):
        owner = access_service.get_owner("P0000001", store.get_user("asmith"))
        assert owner.id == "xwiki:XWiki.jdoe"
        assert owner.name == "John Doe"
        assert owner.email == "jdoe@example.org"
        assert owner.type == "user"

    def test_get_owner_of_public_record_anonymously(self, access_service):
        assert access_service.get_owner("P0000003", None).id == "xwiki:XWiki.jdoe"

    def test_get_owner_missing_record(self, access_service, store):
        with pytest.raises(NotFoundError):
            access_service.get_owner("P9999999", store.get_user("admin"))

    def test_missing_record_reported_before_rights(self, access_service):
        with pytest.raises(NotFoundError):
            access_service.get_owner("P9999999", None)
        with pytest.raises(NotFoundError):
            access_service.set_owner("P9999999", "jdoe", None)

    def test_get_owner_forbidden(self, access_service, store):
        with pytest.raises(ForbiddenError):
            access_service.get_owner("P0000001", store.get_user("bwong"))

    @pytest.mark.parametrize("new_owner", ["bwong", "xwiki:XWiki.bwong", "XWiki.bwong"])
    def test_set_then_get_round_trip(self, access_service, store, new_owner):
        summary = access_service.set_owner("P0000001", new_owner, store.get_user("asmith"))
        assert summary.id == "xwiki:XWiki.bwong"
        assert access_service.get_owner("P0000001", store.get_user("admin")).id == "xwiki:XWiki.bwong"

    def test_set_owner_needs_edit(self, access_service, store):
        with pytest.raises(ForbiddenError):
            access_service.set_owner("P0000002", "jdoe", store.get_user("jdoe"))
        assert store.patients["P0000002"].owner == "xwiki:XWiki.asmith"

    @pytest.mark.parametrize("new_owner", ["ghost", "", "xwiki:XWiki."])
    def test_set_owner_invalid_user_keeps_owner(self, access_service, store, new_owner):
        with pytest.raises(BadRequestError):
            access_service.set_owner("P0000001", new_owner, store.get_user("jdoe"))
        assert store.patients["P0000001"].owner == "xwiki:XWiki.jdoe"

    def test_owner_outside_directory(self):
        store = PatientStore(
            patients=[PatientRecord(id="P1", owner="legacy")],
            users=[User(username="root", admin=True)],
        )
        summary = PatientAccessService(store).get_owner("P1", store.get_user("root"))
        assert summary.id == "xwiki:XWiki.legacy"
        assert summary.name == "legacy"


class TestConsents:
    def test_list(self, access_service, store):
        consents = access_service.list_consents("P0000001", store.get_user("jdoe"))
        statuses = {c.id: c.status for c in consents}
        assert statuses == {
            "real_consent": "yes",
            "genetic": "no",
            "share_history": "no",
            "share_images": "no",
            "matching": "no",
        }
        real = next(c for c in consents if c.id == "real_consent")
        assert real.is_required

    def test_grant_is_idempotent(self, access_service, store):
        editor = store.get_user("asmith")
        assert access_service.grant_consent("P0000001", "genetic", editor) is True
        once = set(store.patients["P0000001"].granted_consents)
        assert access_service.grant_consent("P0000001", "genetic", editor) is False
        assert store.patients["P0000001"].granted_consents == once

    def test_revoke_never_granted(self, access_service, store):
        assert access_service.revoke_consent("P0000001", "matching", store.get_user("jdoe")) is False
        statuses = {c.id: c.status for c in access_service.list_consents("P0000001", store.get_user("jdoe"))}
        assert statuses["matching"] == "no"

    def test_grant_then_revoke(self, access_service, store):
        owner = store.get_user("jdoe")
        access_service.grant_consent("P0000001", "share_images", owner)
        assert access_service.revoke_consent("P0000001", "share_images", owner) is True
        assert "share_images" not in store.patients["P0000001"].granted_consents

    def test_unknown_consent(self, access_service, store):
        with pytest.raises(BadRequestError):
            access_service.grant_consent("P0000001", "no_such_consent", store.get_user("jdoe"))
        with pytest.raises(BadRequestError):
            access_service.revoke_consent("P0000001", "no_such_consent", store.get_user("jdoe"))

    def test_viewer_cannot_change_consents(self, access_service, store):
        with pytest.raises(ForbiddenError):
            access_service.grant_consent("P0000002", "genetic", store.get_user("jdoe"))
        assert store.patients["P0000002"].granted_consents == set()

    def test_concurrent_grants_are_not_lost(self, access_service, store):
        """Each grant copies the record and swaps it back; without the lock, writers overwrite each other."""
        owner = store.get_user("jdoe")
        consent_ids = ["genetic", "share_history", "share_images", "matching"]
        rounds = 25
        barrier = threading.Barrier(len(consent_ids))

        def grant_and_revoke(consent_id):
            barrier.wait()
            for _ in range(rounds):
                access_service.grant_consent("P0000001", consent_id, owner)
                access_service.revoke_consent("P0000001", consent_id, owner)
            access_service.grant_consent("P0000001", consent_id, owner)

        threads = [threading.Thread(target=grant_and_revoke, args=(c,)) for c in consent_ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.patients["P0000001"].granted_consents == {"real_consent", *consent_ids}

    def test_missing_record(self, access_service, store):
        with pytest.raises(NotFoundError):
            access_service.list_consents("P9999999", store.get_user("admin"))
        with pytest.raises(NotFoundError):
            access_service.grant_consent("P9999999", "genetic", store.get_user("admin"))
