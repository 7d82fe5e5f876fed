from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from app.domain.errors import EmailMismatch, TooManyAttempts
from app.models import AppUser, AuditEvent, DocumentSubmission, ResidentRosterEntry
from app.services.account_directory import AccountDirectory
from app.services.transfer_coordinator import TransferCoordinator


def _coordinator(db, gateway):
    return TransferCoordinator(db, gateway=gateway, enqueue_retry=lambda _uid: None)


def _issue(coord, world) -> str:
    return coord.issue_code(
        owner_id=world.owner_id,
        replacement_email=world.replacement_email,
        residence_id=world.residence_id,
    ).code


def test_three_wrong_emails_count_down_and_delete_the_claimant(db, residence_42, make_user, fake_gateway):
    coord = _coordinator(db, fake_gateway)
    code = _issue(coord, residence_42)
    intruder = make_user("intruder@example.com", residence_id=residence_42.residence_id)
    seat = ResidentRosterEntry(residence_id=42, resident_user_id=intruder.id, apartment_number="C9")
    doc = DocumentSubmission(user_id=intruder.id, residence_id=42, document_url="s3://doc")
    db.add_all([seat, doc])
    db.commit()
    intruder_id, seat_id, doc_id = int(intruder.id), int(seat.id), int(doc.id)

    results = [coord.validate_code(code=code, claimant_email="intruder@example.com") for _ in range(3)]

    assert [r.attempts_remaining for r in results] == [2, 1, 0]
    assert [r.account_deleted for r in results] == [False, False, True]
    assert results[-1].code_deleted is True
    assert results[0].code_deleted is False

    assert AccountDirectory(db).find_by_email("intruder@example.com") is None
    assert db.scalar(select(AppUser).where(AppUser.id == intruder_id)) is None
    assert db.scalar(select(ResidentRosterEntry).where(ResidentRosterEntry.id == seat_id)) is None
    assert db.scalar(select(DocumentSubmission).where(DocumentSubmission.id == doc_id)) is None
    assert db.scalar(select(func.count(DocumentSubmission.id)).where(DocumentSubmission.residence_id == 42)) == 0

    ev = db.scalar(select(AuditEvent).where(AuditEvent.action == "handoff.claimant_deleted"))
    assert ev is not None
    assert json.loads(ev.before_json)["email"] == "intruder@example.com"


def test_exhaustion_without_an_account_is_a_noop(db, residence_42, fake_gateway):
    coord = _coordinator(db, fake_gateway)
    code = _issue(coord, residence_42)

    results = [coord.validate_code(code=code, claimant_email="ghost@example.com") for _ in range(3)]

    assert results[-1].attempts_remaining == 0
    assert results[-1].code_deleted is True
    assert results[-1].account_deleted is False


def test_issuer_is_never_deleted_by_own_code(db, residence_42, fake_gateway):
    coord = _coordinator(db, fake_gateway)
    code = _issue(coord, residence_42)

    for _ in range(3):
        last = coord.validate_code(code=code, claimant_email=residence_42.owner_email)

    assert last.code_deleted is True
    assert last.account_deleted is False
    assert db.scalar(select(AppUser).where(AppUser.id == residence_42.owner_id)) is not None


def test_exhaustion_through_complete_claim_raises_with_deletion_flag(db, residence_42, make_user, fake_gateway):
    coord = _coordinator(db, fake_gateway)
    code = _issue(coord, residence_42)
    intruder = make_user("intruder@example.com")
    intruder_id = int(intruder.id)

    for expected in (2, 1):
        with pytest.raises(EmailMismatch) as ei:
            coord.complete_claim(code=code, claimant_id=intruder_id, claimant_email="intruder@example.com")
        assert ei.value.attempts_remaining == expected
        assert ei.value.account_deleted is False

    with pytest.raises(EmailMismatch) as ei:
        coord.complete_claim(code=code, claimant_id=intruder_id, claimant_email="intruder@example.com")
    assert ei.value.attempts_remaining == 0
    assert ei.value.code_deleted is True
    assert ei.value.account_deleted is True

    # the rightful claimant is now locked out as well
    with pytest.raises(TooManyAttempts):
        coord.complete_claim(
            code=code,
            claimant_id=residence_42.replacement_id,
            claimant_email=residence_42.replacement_email,
        )
    assert fake_gateway.calls == []


def test_remediation_failure_does_not_mask_the_rejection(db, residence_42, make_user, fake_gateway):
    class BrokenDirectory(AccountDirectory):
        def delete_account_cascade(self, user_id):
            raise RuntimeError("storage unavailable")

    coord = TransferCoordinator(db, gateway=fake_gateway, directory=BrokenDirectory(db), enqueue_retry=lambda _uid: None)
    code = _issue(coord, residence_42)
    make_user("intruder@example.com")

    for _ in range(3):
        last = coord.validate_code(code=code, claimant_email="intruder@example.com")

    assert last.accepted is False
    assert last.attempts_remaining == 0
    assert last.code_deleted is True
    assert last.account_deleted is False
    assert AccountDirectory(db).find_by_email("intruder@example.com") is not None
