from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Sequence

from qr_attendance.data import Database
from qr_attendance.models import AttendanceRecord, AttendanceStatus, GeoPoint
from qr_attendance.services import AttendanceService, Result
from qr_attendance.services.token_issuer import render_qr_png
from qr_attendance.utils import format_relative_time


def _point(lat: float | None, lng: float | None) -> GeoPoint | None:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise SystemExit("Both --lat and --lng are required for a location.")
    return GeoPoint(lat=lat, lng=lng)


def _format_record(record: AttendanceRecord) -> str:
    line = (
        f"{record.session_id}\t{record.student_id}\t{record.status.value}\t"
        f"{record.scan_method.value}\t{format_relative_time(record.marked_at)}"
    )
    if record.notes:
        line += f"\t{record.notes}"
    return line


def _fail(result: Result) -> int:
    kind = result.error.value if result.error else "error"
    print(f"[{kind}] {result.message}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qr-attendance-admin", description="Manage QR attendance sessions.")
    parser.add_argument("--database", type=Path, help="Path to the sqlite database (defaults to settings).")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init", help="Create or migrate the database.")

    create = commands.add_parser("create-session", help="Create an attendance session.")
    create.add_argument("--class", dest="class_id", required=True)
    create.add_argument("--owner", required=True, help="Teacher who owns the session.")
    create.add_argument("--title")
    create.add_argument("--lat", type=float)
    create.add_argument("--lng", type=float)
    create.add_argument("--radius", type=float, help="Geofence radius in metres (0 disables).")
    create.add_argument("--ttl", type=int, help="Token lifetime in seconds.")

    enroll = commands.add_parser("enroll", help="Add students to a class roster.")
    enroll.add_argument("class_id")
    enroll.add_argument("students", nargs="+")

    withdraw = commands.add_parser("withdraw", help="Deactivate a student on a class roster.")
    withdraw.add_argument("class_id")
    withdraw.add_argument("student")

    issue = commands.add_parser("issue", help="Rotate the session's QR token.")
    issue.add_argument("session_id", type=int)
    issue.add_argument("--as", dest="requested_by", required=True)
    issue.add_argument("--ttl", type=int)
    issue.add_argument("--qr-png", type=Path, help="Write the QR image to this file.")

    verify = commands.add_parser("verify", help="Submit a scanned token for a student.")
    verify.add_argument("session_id", type=int)
    verify.add_argument("student")
    verify.add_argument("--token", required=True, help="Scanned token; pass as --token=VALUE.")
    verify.add_argument("--lat", type=float)
    verify.add_argument("--lng", type=float)

    sweep = commands.add_parser("sweep", help="Mark students without a record as absent.")
    sweep.add_argument("session_id", type=int)
    sweep.add_argument("--as", dest="requested_by", required=True)

    mark = commands.add_parser("mark", help="Correct a student's attendance by hand.")
    mark.add_argument("session_id", type=int)
    mark.add_argument("student")
    mark.add_argument("status", choices=[status.value for status in AttendanceStatus])
    mark.add_argument("--as", dest="requested_by", required=True)
    mark.add_argument("--notes")

    records = commands.add_parser("records", help="List attendance records.")
    target = records.add_mutually_exclusive_group(required=True)
    target.add_argument("--session", type=int)
    target.add_argument("--student")

    summary = commands.add_parser("summary", help="Count a student's records per status.")
    summary.add_argument("student")

    return parser


def _service(args: argparse.Namespace) -> AttendanceService:
    if args.database is None:
        return AttendanceService.from_settings()

    from qr_attendance.config.settings import settings

    return AttendanceService(
        Database(args.database, busy_timeout=settings.db_busy_timeout_seconds),
        default_ttl_seconds=settings.token_ttl_seconds,
        missing_location_policy=settings.missing_location_policy,
    )


def run(args: argparse.Namespace, service: AttendanceService) -> int:
    service.initialize()

    if args.command == "init":
        print("Database ready.")
        return 0

    if args.command == "create-session":
        result = service.create_session(
            args.class_id,
            args.owner,
            title=args.title,
            anchor=_point(args.lat, args.lng),
            radius_meters=args.radius,
            token_ttl_seconds=args.ttl,
        )
        if not result.ok:
            return _fail(result)
        print(result.value.id)
        return 0

    if args.command == "enroll":
        result = service.enroll_students(args.class_id, args.students)
        if not result.ok:
            return _fail(result)
        print(f"Enrolled {result.value} student(s) in {args.class_id}.")
        return 0

    if args.command == "withdraw":
        result = service.withdraw_student(args.class_id, args.student)
        if not result.ok:
            return _fail(result)
        print(f"Withdrew {args.student} from {args.class_id}.")
        return 0

    if args.command == "issue":
        result = service.issue_token(args.session_id, requested_by=args.requested_by, ttl_seconds=args.ttl)
        if not result.ok:
            return _fail(result)
        issued = result.value
        if args.qr_png:
            args.qr_png.write_bytes(render_qr_png(issued.token))
        print(issued.token)
        print(f"expires {issued.expires_at.isoformat()}")
        return 0

    if args.command == "verify":
        result = service.verify_attendance(args.session_id, args.student, args.token, _point(args.lat, args.lng))
        if not result.ok:
            return _fail(result)
        print(_format_record(result.value))
        return 0

    if args.command == "sweep":
        result = service.sweep_absent(args.session_id, args.requested_by)
        if not result.ok:
            return _fail(result)
        print(f"Marked {result.value} student(s) absent.")
        return 0

    if args.command == "mark":
        result = service.mark_attendance(
            args.session_id, args.student, args.status, args.requested_by, notes=args.notes
        )
        if not result.ok:
            return _fail(result)
        print(_format_record(result.value))
        return 0

    if args.command == "records":
        if args.session is not None:
            result = service.session_records(args.session)
        else:
            result = service.student_records(args.student)
        if not result.ok:
            return _fail(result)
        for record in result.value:
            print(_format_record(record))
        return 0

    if args.command == "summary":
        result = service.student_summary(args.student)
        if not result.ok:
            return _fail(result)
        for status, total in result.value.items():
            print(f"{status.value}\t{total}")
        return 0

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    from qr_attendance.config.settings import configure_logging

    configure_logging()
    args = build_parser().parse_args(argv)
    return run(args, _service(args))


if __name__ == "__main__":
    sys.exit(main())
