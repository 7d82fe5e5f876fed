from __future__ import annotations

from sqlalchemy import func, select

from app.cli.seed_demo import seed_demo
from app.models import AccessCode, AppUser, Fee, Residence


def test_seed_demo_is_repeatable(db):
    first = seed_demo(residence_name="Les Lilas", syndic_email="Syndic@Demo.local")
    second = seed_demo(residence_name="Les Lilas", syndic_email="syndic@demo.local")

    assert first.residence_id == second.residence_id
    assert first.code is None
    assert db.scalar(select(func.count(Residence.id))) == 1
    assert db.scalar(select(func.count(Fee.id))) == 1

    syndic = db.scalar(select(AppUser).where(AppUser.email == "syndic@demo.local"))
    assert syndic.role == "syndic"
    assert syndic.residence_id == first.residence_id


def test_seed_demo_can_issue_a_handoff_code(db):
    out = seed_demo(replacement_email="next@demo.local")

    assert out.code
    row = db.scalar(select(AccessCode).where(AccessCode.code == out.code))
    assert row.replacement_email == "next@demo.local"
    assert row.residence_id == out.residence_id
    assert row.state == "issued"
