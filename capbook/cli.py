# capbook/cli.py
from __future__ import annotations

import argparse
import json
from contextlib import closing
from typing import Any

from capbook.company.service import CompanyService
from capbook.company.store import CompanyStore
from capbook.config import load_settings
from capbook.db import ensure_schema, get_conn
from capbook.exceptions import AppError


def _section(title: str) -> None:
    print(f"=== {title} ===")


def _print_setup_status(status: dict[str, Any]) -> None:
    _section("Company")
    print(f"  id     : {status['companyId']}")
    print(f"  status : {status['companyStatus']}")
    print()

    v = status.get("cnpjValidation") or {}
    _section("CNPJ validation")
    print(f"  status      : {v.get('status') or '-'}")
    print(f"  validatedAt : {v.get('validatedAt') or '-'}")
    print(f"  failedAt    : {v.get('failedAt') or '-'}")
    err = v.get("error")
    if err:
        print(f"  error       : {err.get('code')}: {err.get('message')}")
    print(f"  can retry   : {'yes' if status.get('canRetry') else 'no'}")
    print()


def _service(conn) -> CompanyService:
    from capbook.queueing.dispatcher import VerificationDispatcher, get_queue

    cfg = load_settings()
    store = CompanyStore(conn)
    dispatcher = VerificationDispatcher(queue=get_queue(cfg), store=store, policy=cfg.retry)
    return CompanyService(store=store, dispatcher=dispatcher)


def _cmd_init_db(args: argparse.Namespace) -> int:
    with closing(get_conn()) as conn:
        ensure_schema(conn)
    print("schema ready")
    return 0


def _cmd_worker(args: argparse.Namespace) -> int:
    from capbook.queueing.worker import run

    run(burst=args.burst)
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    with closing(get_conn()) as conn:
        try:
            status = _service(conn).get_setup_status(args.company_id)
        except AppError as err:
            print(json.dumps(err.to_dict()))
            return 1
    if args.json:
        print(json.dumps(status, indent=2, sort_keys=True))
    else:
        _print_setup_status(status)
    return 0


def _cmd_retry(args: argparse.Namespace) -> int:
    with closing(get_conn()) as conn:
        try:
            job_id = _service(conn).request_retry(args.company_id, args.user)
        except AppError as err:
            print(json.dumps(err.to_dict()))
            return 1
    print(job_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capbook",
        description="Company registration verification: worker and ops commands.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the SQLite schema if missing.")
    init_parser.set_defaults(func=_cmd_init_db)

    worker_parser = subparsers.add_parser("worker", help="Run an RQ worker for verification jobs.")
    worker_parser.add_argument(
        "--burst",
        action="store_true",
        help="Exit once the queues are empty.",
    )
    worker_parser.set_defaults(func=_cmd_worker)

    status_parser = subparsers.add_parser("status", help="Show a company's setup status.")
    status_parser.add_argument("company_id")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Emit JSON instead of human-readable output.",
    )
    status_parser.set_defaults(func=_cmd_status)

    retry_parser = subparsers.add_parser("retry", help="Retry a failed CNPJ validation.")
    retry_parser.add_argument("company_id")
    retry_parser.add_argument("--user", required=True, help="Id of the requesting user.")
    retry_parser.set_defaults(func=_cmd_retry)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    func = getattr(args, "func", None)
    if func is None:
        parser.error("no command specified")
        return 1

    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
