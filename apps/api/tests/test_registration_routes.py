import unittest

from fastapi import HTTPException
from pydantic import ValidationError

from core.auth import Caller
from core.consent_progress import CONSENT_COMPLETED, CONSENT_PARENT_SIGNED, CONSENT_SENT
from models.event_registration import EventRegistration, RegistrationStatus
from routers.registrations import get_registration_consent, sync_registration_consent
from schemas.registrations import ConsentSyncRequest
from tests._helpers import (
    make_memory_session,
    make_request,
    seed_child_registration,
    seed_event,
    seed_parent_link,
    seed_participant_registration,
    seed_signature,
    seed_template,
)

PARENT = Caller(user_id="parent_1")


class ConsentSyncRequestTests(unittest.TestCase):
    def test_requires_exactly_one_registrant(self) -> None:
        with self.assertRaises(ValidationError):
            ConsentSyncRequest()
        with self.assertRaises(ValidationError):
            ConsentSyncRequest(child_user_id="child_1", user_id="user_1")

    def test_parent_requires_child(self) -> None:
        with self.assertRaises(ValidationError):
            ConsentSyncRequest(user_id="user_1", parent_user_id="parent_1")

    def test_accepts_child_with_parent(self) -> None:
        payload = ConsentSyncRequest(child_user_id="child_1", parent_user_id="parent_1")
        self.assertEqual(payload.child_user_id, "child_1")


class RegistrationConsentRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db, self.engine = make_memory_session()
        seed_template(self.db, "waiver", required_signer_type="PARENT_GUARDIAN_CHILD", sign_once=False)
        seed_event(self.db, "event_1", ["waiver"])
        self.registration_id = seed_child_registration(
            self.db,
            event_id="event_1",
            child_id="child_1",
            parent_id="parent_1",
            consent_status=None,
        ).id
        seed_parent_link(self.db, parent_id="parent_1", child_id="child_1")
        seed_signature(
            self.db,
            template_id="waiver",
            user_id="parent_1",
            signer_role="parent_guardian",
            host_id="child_1",
            event_id="event_1",
        )

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _sync(self, caller: Caller, event_id: str = "event_1", **fields):
        return sync_registration_consent(
            event_id,
            ConsentSyncRequest(**fields),
            db=self.db,
            caller=caller,
            request=make_request(f"/events/{event_id}/registrations/consent/sync"),
        )

    def _get(self, caller: Caller, event_id: str = "event_1", **params):
        return get_registration_consent(
            event_id,
            child_user_id=params.get("child_user_id"),
            parent_user_id=params.get("parent_user_id"),
            user_id=params.get("user_id"),
            db=self.db,
            caller=caller,
        )

    def _stored(self) -> EventRegistration:
        self.db.expire_all()
        return self.db.get(EventRegistration, self.registration_id)

    def test_linked_parent_sync_stores_progress(self) -> None:
        out = self._sync(PARENT, child_user_id="child_1")

        self.assertTrue(out.updated)
        self.assertEqual(out.registration.consent_status, CONSENT_PARENT_SIGNED)
        self.assertTrue(out.registration.changed)
        self.assertEqual(
            [(item.template_id, item.signer_context, item.label) for item in out.registration.outstanding],
            [("waiver", "child", "Child")],
        )
        self.assertEqual(self._stored().consent_status, CONSENT_PARENT_SIGNED)

    def test_repeated_sync_reports_no_change(self) -> None:
        self._sync(PARENT, child_user_id="child_1")
        out = self._sync(PARENT, child_user_id="child_1", parent_user_id="parent_1")

        self.assertTrue(out.updated)
        self.assertFalse(out.registration.changed)

    def test_child_may_sync_own_registration(self) -> None:
        out = self._sync(Caller(user_id="child_1"), child_user_id="child_1")
        self.assertEqual(out.registration.registrant_id, "child_1")

    def test_sync_without_open_registration_reports_not_updated(self) -> None:
        out = self._sync(Caller(user_id="admin", is_admin=True), event_id="event_none", child_user_id="child_1")

        self.assertFalse(out.updated)
        self.assertIsNone(out.registration)

    def test_sync_for_wrong_parent_filter_reports_not_updated(self) -> None:
        out = self._sync(PARENT, child_user_id="child_1", parent_user_id="parent_9")
        self.assertFalse(out.updated)

    def test_unrelated_caller_cannot_sync(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._sync(Caller(user_id="stranger"), child_user_id="child_1")

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIsNone(self._stored().consent_status)

    def test_participant_sync(self) -> None:
        seed_template(self.db, "release", required_signer_type="PARTICIPANT")
        seed_event(self.db, "event_adult", ["release"])
        seed_participant_registration(self.db, event_id="event_adult", user_id="user_1")

        out = self._sync(Caller(user_id="user_1"), event_id="event_adult", user_id="user_1")

        self.assertEqual(out.registration.status, RegistrationStatus.PENDINGCONSENT.value)
        self.assertEqual(out.registration.consent_status, CONSENT_SENT)
        self.assertFalse(out.registration.changed)

    def test_get_reports_progress_without_writing(self) -> None:
        out = self._get(PARENT, child_user_id="child_1")

        self.assertEqual(out.consent_status, CONSENT_PARENT_SIGNED)
        self.assertIsNone(out.changed)
        self.assertTrue(out.is_child_registration)
        self.assertIsNone(self._stored().consent_status)

    def test_get_reflects_completed_registration(self) -> None:
        seed_signature(
            self.db,
            template_id="waiver",
            user_id="child_1",
            signer_role="child",
            host_id="child_1",
            event_id="event_1",
        )

        out = self._get(PARENT, child_user_id="child_1")

        self.assertEqual(out.status, RegistrationStatus.ACTIVE.value)
        self.assertEqual(out.consent_status, CONSENT_COMPLETED)
        self.assertEqual(out.satisfied_template_ids, ["waiver"])

    def test_get_requires_exactly_one_registrant(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._get(PARENT)
        self.assertEqual(ctx.exception.status_code, 422)

        with self.assertRaises(HTTPException) as ctx:
            self._get(PARENT, child_user_id="child_1", user_id="user_1")
        self.assertEqual(ctx.exception.status_code, 422)

    def test_get_missing_registration_is_not_found(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._get(Caller(user_id="child_2"), child_user_id="child_2")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_get_by_unrelated_caller_is_forbidden(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            self._get(Caller(user_id="user_9"), user_id="user_1")
        self.assertEqual(ctx.exception.status_code, 403)


if __name__ == "__main__":
    unittest.main()
