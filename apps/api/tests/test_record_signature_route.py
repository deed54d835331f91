import unittest

from fastapi import HTTPException
from sqlalchemy import func, select

from core.auth import Caller
from core.consent_progress import CONSENT_COMPLETED, CONSENT_PARENT_SIGNED
from core.observability import COUNTERS, METRIC_SIGNATURE_DENIED, METRIC_SIGNATURE_RECORDED
from core.permissions import CHILD_SIGNER_MESSAGE
from core.signer_types import SignerContext
from models.event_registration import EventRegistration, RegistrationStatus
from models.parent_child_link import ParentChildLinkStatus
from models.signed_document import SignedDocument
from routers.documents import record_signature, resolve_signer_context
from schemas.documents import RecordSignatureIn
from tests._helpers import (
    make_memory_session,
    make_request,
    seed_child_registration,
    seed_event,
    seed_parent_link,
    seed_participant_registration,
    seed_template,
)

PATH = "/documents/record-signature"


class ResolveSignerContextTests(unittest.TestCase):
    def test_explicit_context_is_normalized(self) -> None:
        self.assertEqual(
            resolve_signer_context("Parent", user_id="parent_1", child_user_id="child_1"),
            SignerContext.PARENT_GUARDIAN,
        )

    def test_signing_as_the_child_infers_child(self) -> None:
        self.assertEqual(
            resolve_signer_context(None, user_id="child_1", child_user_id="child_1"),
            SignerContext.CHILD,
        )

    def test_signing_for_a_child_infers_parent_guardian(self) -> None:
        self.assertEqual(
            resolve_signer_context("  ", user_id="parent_1", child_user_id="child_1"),
            SignerContext.PARENT_GUARDIAN,
        )

    def test_no_child_infers_participant(self) -> None:
        self.assertEqual(
            resolve_signer_context(None, user_id="user_1", child_user_id=None),
            SignerContext.PARTICIPANT,
        )


class RecordSignatureRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db, self.engine = make_memory_session()
        COUNTERS.reset()
        seed_template(self.db, "waiver", required_signer_type="PARENT_GUARDIAN_CHILD", sign_once=False)
        seed_event(self.db, "event_1", ["waiver"])
        self.registration_id = seed_child_registration(
            self.db,
            event_id="event_1",
            child_id="child_1",
            parent_id="parent_1",
        ).id
        seed_parent_link(self.db, parent_id="parent_1", child_id="child_1")

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _record(self, caller: Caller, headers: dict[str, str] | None = None, **fields):
        payload = RecordSignatureIn(document_id=fields.pop("document_id", "doc_1"), **fields)
        return record_signature(payload, db=self.db, caller=caller, request=make_request(PATH, headers=headers))

    def _signature_count(self) -> int:
        return self.db.scalar(select(func.count()).select_from(SignedDocument))

    def _registration(self, registration_id: str | None = None) -> EventRegistration:
        self.db.expire_all()
        return self.db.get(EventRegistration, registration_id or self.registration_id)

    def test_parent_signature_for_linked_child_updates_registration(self) -> None:
        out = self._record(
            Caller(user_id="parent_1"),
            template_id="waiver",
            event_id="event_1",
            child_user_id="child_1",
        )

        self.assertFalse(out.replayed)
        self.assertEqual(out.signed_document.signer_role, SignerContext.PARENT_GUARDIAN.value)
        self.assertEqual(out.signed_document.host_id, "child_1")
        self.assertEqual(out.signed_document.status, "SIGNED")
        self.assertEqual(len(out.registrations), 1)
        self.assertEqual(out.registrations[0].consent_status, CONSENT_PARENT_SIGNED)
        self.assertTrue(out.registrations[0].changed)
        self.assertEqual(self._registration().consent_status, CONSENT_PARENT_SIGNED)
        self.assertEqual(COUNTERS.value(METRIC_SIGNATURE_RECORDED), 1)

    def test_both_signers_complete_registration(self) -> None:
        self._record(Caller(user_id="parent_1"), template_id="waiver", event_id="event_1", child_user_id="child_1")
        out = self._record(Caller(user_id="child_1"), template_id="waiver", event_id="event_1", child_user_id="child_1")

        self.assertEqual(out.signed_document.signer_role, SignerContext.CHILD.value)
        registration = self._registration()
        self.assertEqual(registration.status, RegistrationStatus.ACTIVE)
        self.assertEqual(registration.consent_status, CONSENT_COMPLETED)

    def test_identical_signature_is_replayed(self) -> None:
        first = self._record(Caller(user_id="parent_1"), template_id="waiver", event_id="event_1", child_user_id="child_1")
        second = self._record(
            Caller(user_id="parent_1"),
            template_id="waiver",
            event_id="event_1",
            child_user_id="child_1",
            document_id="doc_2",
        )

        self.assertTrue(second.replayed)
        self.assertEqual(first.signed_document.id, second.signed_document.id)
        self.assertEqual(self._signature_count(), 1)
        self.assertFalse(second.registrations[0].changed)
        self.assertEqual(COUNTERS.value(METRIC_SIGNATURE_RECORDED), 1)

    def test_unlinked_parent_is_forbidden(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._record(Caller(user_id="parent_2"), template_id="waiver", event_id="event_1", child_user_id="child_1")

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(self._signature_count(), 0)
        self.assertEqual(COUNTERS.value(METRIC_SIGNATURE_DENIED), 1)

    def test_revoked_link_is_forbidden(self) -> None:
        seed_parent_link(self.db, parent_id="parent_3", child_id="child_1", status=ParentChildLinkStatus.REVOKED)

        with self.assertRaises(HTTPException) as ctx:
            self._record(Caller(user_id="parent_3"), template_id="waiver", event_id="event_1", child_user_id="child_1")

        self.assertEqual(ctx.exception.status_code, 403)

    def test_parent_cannot_sign_as_child(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._record(
                Caller(user_id="parent_1"),
                template_id="waiver",
                event_id="event_1",
                user_id="child_1",
                child_user_id="child_1",
                signer_context="child",
            )

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(ctx.exception.detail, CHILD_SIGNER_MESSAGE)
        self.assertEqual(self._signature_count(), 0)

    def test_child_context_for_another_child_is_forbidden(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._record(
                Caller(user_id="child_1"),
                template_id="waiver",
                event_id="event_1",
                child_user_id="child_2",
                signer_context="child",
            )

        self.assertEqual(ctx.exception.status_code, 403)

    def test_admin_may_record_for_any_signer(self) -> None:
        out = self._record(
            Caller(user_id="support_1", is_admin=True),
            template_id="waiver",
            event_id="event_1",
            user_id="parent_1",
            child_user_id="child_1",
        )

        self.assertEqual(out.signed_document.user_id, "parent_1")
        self.assertEqual(out.registrations[0].consent_status, CONSENT_PARENT_SIGNED)

    def test_unknown_template_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._record(Caller(user_id="parent_1"), template_id="missing", event_id="event_1", child_user_id="child_1")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_unknown_event_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._record(Caller(user_id="parent_1"), template_id="waiver", event_id="missing", child_user_id="child_1")
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(self._signature_count(), 0)

    def test_forwarded_ip_and_email_are_stored(self) -> None:
        out = self._record(
            Caller(user_id="parent_1"),
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
            template_id="waiver",
            event_id="event_1",
            child_user_id="child_1",
            signer_email="  Parent@Example.COM ",
        )

        stored = self.db.get(SignedDocument, out.signed_document.id)
        self.assertEqual(stored.ip_address, "203.0.113.9")
        self.assertEqual(stored.signer_email, "parent@example.com")

    def test_sign_once_child_signature_syncs_every_event(self) -> None:
        seed_template(self.db, "medical", required_signer_type="CHILD", sign_once=True)
        seed_event(self.db, "event_a", ["medical"])
        seed_event(self.db, "event_b", ["medical"])
        first = seed_child_registration(self.db, event_id="event_a", child_id="child_1", parent_id="parent_1").id
        second = seed_child_registration(self.db, event_id="event_b", child_id="child_1", parent_id="parent_1").id

        out = self._record(Caller(user_id="child_1"), template_id="medical", event_id="event_a")

        self.assertEqual(out.signed_document.signer_role, SignerContext.PARTICIPANT.value)
        # Without a child id the child signs as a participant, which child registrations ignore.
        self.assertEqual(self._registration(first).status, RegistrationStatus.PENDINGCONSENT)

        out = self._record(
            Caller(user_id="child_1"),
            template_id="medical",
            event_id="event_a",
            child_user_id="child_1",
        )

        synced_events = sorted(progress.event_id for progress in out.registrations)
        self.assertIn("event_a", synced_events)
        self.assertIn("event_b", synced_events)
        self.assertEqual(self._registration(first).status, RegistrationStatus.ACTIVE)
        self.assertEqual(self._registration(second).status, RegistrationStatus.ACTIVE)

    def test_participant_signature_completes_self_registration(self) -> None:
        seed_template(self.db, "release", required_signer_type="PARTICIPANT", sign_once=False)
        seed_event(self.db, "event_adult", ["release"])
        registration_id = seed_participant_registration(self.db, event_id="event_adult", user_id="user_1").id

        out = self._record(Caller(user_id="user_1"), template_id="release", event_id="event_adult", type="TEXT")

        self.assertEqual(out.signed_document.signer_role, SignerContext.PARTICIPANT.value)
        self.assertEqual(out.registrations[0].status, RegistrationStatus.ACTIVE.value)
        self.assertEqual(self._registration(registration_id).consent_status, CONSENT_COMPLETED)
        self.assertEqual(self.db.get(SignedDocument, out.signed_document.id).document_name, "Text Waiver")


if __name__ == "__main__":
    unittest.main()
