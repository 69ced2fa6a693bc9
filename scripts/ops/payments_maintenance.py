from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.factu.core.config import settings
from app.factu.services.pending_payments import NotificationConsumer, PendingPaymentService


def _session_factory(database_url: str | None):
    engine = create_engine(database_url or settings.DATABASE_URL, future=True)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def run_expire(*, database_url: str | None = None, now: datetime | None = None) -> dict:
    SessionLocal = _session_factory(database_url)
    with SessionLocal() as db:
        expired = PendingPaymentService(db).expire_stale(now)
    return {"command": "expire", "expired": expired}


def run_process(*, database_url: str | None = None, payment_id: str | None = None) -> dict:
    SessionLocal = _session_factory(database_url)
    with SessionLocal() as db:
        results = NotificationConsumer(db).process(payment_id)
    return {
        "command": "process",
        "processed": len(results),
        "applied": sum(1 for item in results if item.applied),
        "manual_review": [
            {"payment_id": item.payment_id, "status": item.status, "reason": item.manual_review}
            for item in results
            if item.manual_review
        ],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pending payment maintenance for FactuSystem")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("expire", help="Mark overdue pending payments as expired")
    process = subparsers.add_parser("process", help="Apply unprocessed payment notifications")
    process.add_argument("--payment-id", help="Only process notifications for this payment")
    args = parser.parse_args(argv)
    try:
        if args.command == "expire":
            report = run_expire(database_url=args.database_url)
        else:
            report = run_process(database_url=args.database_url, payment_id=args.payment_id)
    except Exception as exc:
        print(f"payments_maintenance {args.command} failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(report, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
