# backend/app/cli/__main__.py
from __future__ import annotations

import argparse

from app.cli.seed_demo import seed_demo
from app.db import SessionLocal
from app.services.code_store import purge_expired


def main() -> None:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed-demo", help="create a demo residence and syndic")
    seed.add_argument("--residence-name", default="Residence Demo")
    seed.add_argument("--syndic-email", default="syndic@demo.local")
    seed.add_argument("--replacement-email", default=None, help="also issue a handoff code for this email")

    purge = sub.add_parser("purge-expired", help="delete unused access codes past retention")
    purge.add_argument("--retention-days", type=int, default=None)

    args = p.parse_args()

    if args.command == "seed-demo":
        out = seed_demo(
            residence_name=args.residence_name,
            syndic_email=args.syndic_email,
            replacement_email=args.replacement_email,
        )
        print(
            {
                "ok": True,
                "residence_id": out.residence_id,
                "syndic_email": out.syndic_email,
                "replacement_email": out.replacement_email,
                "code": out.code,
            }
        )
        return

    db = SessionLocal()
    try:
        print({"ok": True, "purged": purge_expired(db, retention_days=args.retention_days)})
    finally:
        db.close()


if __name__ == "__main__":
    main()
