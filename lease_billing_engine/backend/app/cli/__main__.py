# backend/app/cli/__main__.py
from __future__ import annotations

import argparse
from datetime import date

from app.cli.seed_demo import seed_demo
from app.db import SessionLocal
from app.domain.billing.proration import month_bounds
from app.logging_config import configure_logging
from app.services.invoice_runs import run_invoice_batch
from app.services.lease_activation import activate_lease


def _period(value: str) -> tuple[date, date]:
    try:
        y, m = value.split("-", 1)
        return month_bounds(date(int(y), int(m), 1))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")


def main() -> None:
    p = argparse.ArgumentParser(prog="python -m app.cli")
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("seed-demo", help="create a demo org, charge types, rate plan and a draft lease")
    s.add_argument("--org-slug", default="demo")
    s.add_argument("--org-name", default="demo")
    s.add_argument("--no-sample-lease", action="store_true")

    r = sub.add_parser("run-invoices", help="run the invoice batch for one org and month")
    r.add_argument("--org-id", type=int, required=True)
    r.add_argument("--period", type=_period, required=True, help="YYYY-MM")
    r.add_argument("--workers", type=int, default=None)

    a = sub.add_parser("activate", help="activate a draft lease")
    a.add_argument("--org-id", type=int, required=True)
    a.add_argument("--lease-id", type=int, required=True)
    a.add_argument("--version", type=int, default=None, help="expected lease version")

    args = p.parse_args()
    configure_logging()

    if args.cmd == "seed-demo":
        out = seed_demo(
            org_slug=args.org_slug,
            org_name=args.org_name,
            create_sample_lease=(not args.no_sample_lease),
        )
        print({"ok": True, "org_id": out.org_id, "org_slug": out.org_slug, "lease_id": out.lease_id})
        return

    if args.cmd == "run-invoices":
        ps, pe = args.period
        summary = run_invoice_batch(SessionLocal, org_id=args.org_id, period_start=ps, period_end=pe, max_workers=args.workers)
        print(
            {
                "ok": summary.status == "completed",
                "run_number": summary.run_number,
                "status": summary.status,
                "total_leases": summary.total_leases,
                "success_count": summary.success_count,
                "failure_count": summary.failure_count,
            }
        )
        return

    db = SessionLocal()
    try:
        res = activate_lease(db, org_id=args.org_id, lease_id=args.lease_id, expected_version=args.version)
        if res.ok:
            print({"ok": True, "lease_id": res.lease_id, "status": res.status, "version": res.version})
        else:
            print({"ok": False, "lease_id": res.lease_id, "error": res.error.as_info().as_dict()})
            raise SystemExit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
