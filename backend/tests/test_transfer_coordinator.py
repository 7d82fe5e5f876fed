# backend/tests/test_transfer_coordinator.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from app.domain import handoff_states as hs
from app.domain.audit import handoff_trail
from app.domain.errors import (
    CodeAlreadyUsed,
    Forbidden,
    InvalidAction,
    PartialTransferFailure,
    ResidenceNotFound,
    TransferConflict,
    WaitingForReplacement,
)
from app.models import AccessCode, AppUser, AuditEvent, Fee, Payment, Residence, ResidentRosterEntry
from app.services import code_store, ownership_transfer
from app.services.transfer_coordinator import TransferCoordinator


def _coordinator(db, gateway, retries=None):
    sink = retries if retries is not None else []
    return TransferCoordinator(db, gateway=gateway, enqueue_retry=sink.append)


def _issue(coord, world, **kw) -> str:
    return coord.issue_code(
        owner_id=world.owner_id,
        replacement_email=world.replacement_email,
        residence_id=world.residence_id,
        **kw,
    ).code


def _user(db, user_id) -> AppUser:
    return db.scalar(select(AppUser).where(AppUser.id == int(user_id)).execution_options(populate_existing=True))


def test_complete_claim_end_to_end_for_residence_42(db, residence_42, make_gateway):
    w = residence_42
    gateway = make_gateway({w.owner_id: ["sub_1", "sub_2"]})
    coord = _coordinator(db, gateway)
    code = _issue(coord, w)

    out = coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email="replacement@example.com")

    assert out.state == hs.COMPLETE
    assert out.already_used is False

    claimant = _user(db, w.replacement_id)
    owner = _user(db, w.owner_id)
    assert claimant.role == hs.ROLE_SYNDIC
    assert claimant.residence_id == 42
    assert claimant.onboarding_completed is True
    assert owner.role == hs.ROLE_RESIDENT

    assert db.scalar(select(Residence.syndic_user_id).where(Residence.id == 42)) == w.replacement_id
    assert db.scalar(select(Fee.created_by_user_id).where(Fee.id == w.record_ids["fee"])) == w.replacement_id
    assert db.scalar(select(Payment.recorded_by_user_id).where(Payment.id == w.record_ids["payment"])) == w.replacement_id
    assert (
        db.scalar(select(ResidentRosterEntry.managed_by_user_id).where(ResidentRosterEntry.id == w.record_ids["roster"]))
        == w.replacement_id
    )
    assert gateway.cancelled == ["sub_1", "sub_2"]

    row = code_store.find(db, code)
    assert row.code_used is True
    assert row.used_by_user_id == w.replacement_id
    assert row.state == hs.COMPLETE

    # a second completion is refused and moves nothing
    db.execute(
        Fee.__table__.insert().values(residence_id=42, title="New", amount=10.0, created_by_user_id=w.owner_id)
    )
    db.commit()
    with pytest.raises(CodeAlreadyUsed):
        coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)
    assert db.scalar(select(Fee.created_by_user_id).where(Fee.title == "New")) == w.owner_id
    assert gateway.calls == [w.owner_id]
    assert code_store.find(db, code).failed_attempts == 0


def test_two_party_finalize_requires_claim_and_owner(db, residence_42, make_user, make_gateway):
    w = residence_42
    gateway = make_gateway()
    coord = _coordinator(db, gateway)
    code = _issue(coord, w)

    with pytest.raises(WaitingForReplacement):
        coord.finalize_transfer(code=code, owner_id=w.owner_id)

    claimed = coord.claim_code(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)
    assert claimed.state == hs.CLAIM_PENDING
    # claiming grants nothing yet
    assert _user(db, w.replacement_id).role == hs.ROLE_RESIDENT

    stranger = make_user("stranger@example.com")
    with pytest.raises(Forbidden):
        coord.finalize_transfer(code=code, owner_id=stranger.id)

    out = coord.finalize_transfer(code=code, owner_id=w.owner_id)
    assert out.state == hs.COMPLETE
    assert _user(db, w.replacement_id).role == hs.ROLE_SYNDIC
    assert _user(db, w.owner_id).role == hs.ROLE_RESIDENT

    with pytest.raises(CodeAlreadyUsed):
        coord.finalize_transfer(code=code, owner_id=w.owner_id)

    events = [e.action for e in handoff_trail(db, residence_id=42)]
    assert events == ["handoff.code_issued", "handoff.code_claimed", "handoff.completed"]


def test_claimed_code_cannot_be_completed_by_another_account(db, residence_42, make_user, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)
    coord.claim_code(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    # the bound email presented under a different account id
    other = make_user("other@example.com")
    with pytest.raises(TransferConflict):
        coord.complete_claim(code=code, claimant_id=other.id, claimant_email=w.replacement_email)


def test_only_the_syndic_can_issue(db, residence_42, make_user, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    resident = make_user("resident@example.com", residence_id=42)

    with pytest.raises(Forbidden):
        coord.issue_code(owner_id=resident.id, replacement_email="x@example.com", residence_id=42)
    with pytest.raises(InvalidAction):
        coord.issue_code(owner_id=w.owner_id, replacement_email=w.owner_email, residence_id=42)
    with pytest.raises(ResidenceNotFound) as exc:
        coord.issue_code(owner_id=w.owner_id, replacement_email="x@example.com", residence_id=999)
    assert exc.value.status_code == 404
    assert "state" not in exc.value.detail


def test_cancel_records_abort_and_refuses_after_use(db, residence_42, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)
    code_id = code_store.find(db, code).id

    with pytest.raises(Forbidden):
        coord.cancel_code(code=code, requester_id=w.replacement_id)
    assert coord.cancel_code(code=code, requester_id=w.owner_id)["state"] == hs.ABORTED_BY_OWNER
    assert coord.check_code_status(code=code)["exists"] is False

    ev = db.scalar(select(AuditEvent).where(AuditEvent.action == "handoff.code_cancelled"))
    assert hs.ABORTED_BY_OWNER in ev.after_json
    assert code not in ev.before_json
    issued = db.scalar(select(AuditEvent).where(AuditEvent.action == "handoff.code_issued"))
    assert ev.entity_id == issued.entity_id == str(code_id)

    code = _issue(coord, w)
    coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)
    with pytest.raises(CodeAlreadyUsed):
        coord.cancel_code(code=code, requester_id=w.owner_id)


def test_subscription_failure_does_not_block_completion(db, residence_42, make_gateway):
    w = residence_42
    retries: list[int] = []
    coord = _coordinator(db, make_gateway(fail=True), retries)
    code = _issue(coord, w)

    out = coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    assert out.state == hs.COMPLETE
    assert out.subscriptions is not None and out.subscriptions.ok is False
    assert retries == [w.owner_id]
    assert code_store.find(db, code).code_used is True


def test_partial_transfer_failure_leaves_code_resumable(db, residence_42, monkeypatch, make_gateway):
    w = residence_42
    gateway = make_gateway()
    coord = _coordinator(db, gateway)
    code = _issue(coord, w)

    real_transfer = ownership_transfer.transfer
    calls = {"n": 0}

    def failing_once(db_, **kw):
        calls["n"] += 1
        if calls["n"] == 1:
            raise PartialTransferFailure(completed_steps=["residence"], failed_step="resident_roster")
        return real_transfer(db_, **kw)

    monkeypatch.setattr("app.services.transfer_coordinator.transfer", failing_once)

    with pytest.raises(PartialTransferFailure):
        coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    row = code_store.find(db, code)
    assert row.state == hs.DATA_TRANSFERRING
    assert row.code_used is False
    assert row.failed_attempts == 0
    with pytest.raises(CodeAlreadyUsed):
        coord.cancel_code(code=code, requester_id=w.owner_id)

    out = coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)
    assert out.state == hs.COMPLETE
    assert db.scalar(select(Residence.syndic_user_id).where(Residence.id == 42)) == w.replacement_id


def test_mark_used_race_loser_with_same_target_is_benign(db, residence_42, monkeypatch, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)
    real_mark_used = code_store.mark_used

    def winner_first(db_, *, access_code, account_id):
        # another request consumes the code for the same account just before us
        db_.execute(
            AccessCode.__table__.update()
            .where(AccessCode.id == access_code.id)
            .values(code_used=True, used_by_user_id=account_id, state=hs.COMPLETE)
        )
        db_.commit()
        return real_mark_used(db_, access_code=access_code, account_id=account_id)

    monkeypatch.setattr(code_store, "mark_used", winner_first)
    out = coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    assert out.already_used is True
    assert db.scalar(select(AuditEvent).where(AuditEvent.action == "handoff.completed")) is None


def test_mark_used_race_loser_with_other_target_conflicts(db, residence_42, make_user, monkeypatch, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)
    other = make_user("other@example.com")
    real_mark_used = code_store.mark_used

    def other_wins(db_, *, access_code, account_id):
        db_.execute(
            AccessCode.__table__.update()
            .where(AccessCode.id == access_code.id)
            .values(code_used=True, used_by_user_id=other.id, state=hs.COMPLETE)
        )
        db_.commit()
        return real_mark_used(db_, access_code=access_code, account_id=account_id)

    monkeypatch.setattr(code_store, "mark_used", other_wins)
    with pytest.raises(TransferConflict):
        coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)


def test_delete_account_code_promotes_without_moving_data(db, residence_42, make_gateway):
    w = residence_42
    gateway = make_gateway({w.owner_id: ["sub_1"]})
    coord = _coordinator(db, gateway)
    code = _issue(coord, w, action_type=hs.ACTION_DELETE_ACCOUNT)

    out = coord.complete_claim(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    assert out.transfer is None
    assert out.subscriptions is None
    assert gateway.calls == []
    assert _user(db, w.replacement_id).role == hs.ROLE_SYNDIC
    assert _user(db, w.owner_id).role == hs.ROLE_SYNDIC
    assert db.scalar(select(Residence.syndic_user_id).where(Residence.id == 42)) == w.owner_id

    code = _issue(coord, w, action_type=hs.ACTION_DELETE_ACCOUNT)
    with pytest.raises(InvalidAction):
        coord.finalize_transfer(code=code, owner_id=w.owner_id)


def test_status_and_pending_lookup(db, residence_42, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)

    status = coord.check_code_status(code=code)
    assert status == {
        "exists": True,
        "used": False,
        "attempts_remaining": 3,
        "expired": False,
        "state": hs.ISSUED,
        "claimed": False,
        "action_type": hs.ACTION_CHANGE_ROLE,
    }
    assert coord.check_code_status(code="NOPE2345")["exists"] is False

    pending = coord.check_replacement_email(email="Replacement@Example.com")
    assert pending["residence_id"] == 42
    assert coord.check_replacement_email(email="nobody@example.com") is None


def test_reissue_keeps_a_claimed_handoff_until_cancelled(db, residence_42, make_gateway):
    w = residence_42
    coord = _coordinator(db, make_gateway())
    code = _issue(coord, w)
    coord.claim_code(code=code, claimant_id=w.replacement_id, claimant_email=w.replacement_email)

    with pytest.raises(TransferConflict):
        coord.issue_code(owner_id=w.owner_id, replacement_email="other@example.com", residence_id=42)

    row = code_store.find(db, code)
    assert row is not None
    assert row.state == hs.CLAIM_PENDING

    coord.cancel_code(code=code, requester_id=w.owner_id)
    fresh = coord.issue_code(owner_id=w.owner_id, replacement_email="other@example.com", residence_id=42)
    assert fresh.replacement_email == "other@example.com"
    assert [e.action for e in handoff_trail(db, residence_id=42)][-2:] == ["handoff.code_cancelled", "handoff.code_issued"]
