#!/usr/bin/env python3
"""
Command line access to the appointment calendar.

Uses the backend configured through AGENDA_* environment variables (or .env).

Examples:
    python agenda_cli.py slots 2026-02-20
    python agenda_cli.py list --date 2026-02-21
    python agenda_cli.py book 2026-02-21 09:00 "Maria Silva" --phone 19900000000 --store 1
    python agenda_cli.py cancel 123456789
    python agenda_cli.py clear --store 3 --yes
    python agenda_cli.py clients silva
"""
import argparse
import sys

from agenda.context import AppContext
from agenda.logging_config import setup_structured_logging
from agenda.settings import load_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Optical shop appointment calendar")
    commands = parser.add_subparsers(dest="command", required=True)

    slots = commands.add_parser("slots", help="Show free slots of a date")
    slots.add_argument("date", help="YYYY-MM-DD")
    slots.add_argument("--store", type=int, default=None, help="Store id")

    listing = commands.add_parser("list", help="List appointments")
    listing.add_argument("--date", default=None, help="YYYY-MM-DD")
    listing.add_argument("--store", type=int, default=None, help="Store id")
    listing.add_argument("--month", default=None, help="YYYY-MM")

    book = commands.add_parser("book", help="Book a slot")
    book.add_argument("date", help="YYYY-MM-DD")
    book.add_argument("time", help="HH:MM")
    book.add_argument("client", help="Client name")
    book.add_argument("--phone", default="")
    book.add_argument("--notes", default="")
    book.add_argument("--store", type=int, default=None, help="Store id")
    book.add_argument("--fallback", action="store_true", help="Save locally if the backend is down")

    cancel = commands.add_parser("cancel", help="Delete an appointment")
    cancel.add_argument("id", type=int)

    clear = commands.add_parser("clear", help="Delete all appointments (or one store's)")
    clear.add_argument("--store", type=int, default=None, help="Only this store")
    clear.add_argument("--yes", action="store_true", help="Confirm deletion")

    commands.add_parser("stores", help="List active stores")
    clients = commands.add_parser("clients", help="List or search registered clients")
    clients.add_argument("query", nargs="?", default="", help="Name, phone or email fragment")
    commands.add_parser("sync", help="Push appointments saved locally while offline")

    return parser


def print_appointments(appointments) -> None:
    if not appointments:
        print("No appointments.")
        return
    for apt in appointments:
        pending = " (pending sync)" if apt.pending_sync else ""
        print(f"{apt.date} {apt.time}  [{apt.store_name or apt.store_id}]  "
              f"{apt.client_name}  {apt.client_phone}  #{apt.id}{pending}")


def main(argv=None) -> int:
    """Run one command; returns the process exit code."""
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_structured_logging(settings.log_level)

    context = AppContext(settings, run_in_background=False)
    try:
        if args.command == "stores":
            for store in context.directory.list_stores():
                print(f"{store.id}  {store.name}  {store.color}")
            return 0

        if args.command == "clients":
            found = context.clients.search(args.query)
            if not found:
                print("No clients.")
            for client in found:
                print(f"{client.name}  {client.phone}  {client.email}  #{client.id}")
            return 0

        if args.command == "sync":
            report = context.sync_pending()
            if report is None:
                print("Local backend: nothing to sync.")
                return 0
            print(f"Pushed {len(report.pushed)}, conflicts {len(report.conflicts)}, "
                  f"rejected {len(report.rejected)}")
            if report.stopped:
                print(f"Stopped: {report.error}")
            return 0 if report.complete else 1

        if args.command == "clear" and not args.yes:
            scope = f"store {args.store}" if args.store is not None else "ALL stores"
            print(f"Refusing to delete appointments of {scope} without --yes.")
            return 2

        refreshed = context.store.refresh()
        if not refreshed.ok and not (args.command == "book" and args.fallback):
            print(f"Backend unavailable: {refreshed.message}")
            return 1

        if args.command == "slots":
            free = context.free_slots(args.date, store_id=args.store)
            print(" ".join(free) if free else "No free slots.")
            return 0

        if args.command == "list":
            print_appointments(context.store.cached(date=args.date, store_id=args.store, month_year=args.month))
            return 0

        if args.command == "book":
            result = context.book(
                args.date,
                args.time,
                args.client,
                client_phone=args.phone,
                notes=args.notes,
                store_id=args.store,
                allow_local_fallback=args.fallback,
            )
            if not result.ok:
                print(f"Not booked ({result.error.value}): {result.message}")
                return 1
            print_appointments([result.value])
            return 0

        if args.command == "cancel":
            result = context.cancel(args.id)
            if not result.ok:
                print(f"Not deleted ({result.error.value}): {result.message}")
                return 1
            print(f"Deleted #{args.id}")
            return 0

        if args.command == "clear":
            result = context.clear_appointments(args.store)
            if not result.ok:
                print(f"Not cleared ({result.error.value}): {result.message}")
                return 1
            print(f"Deleted {result.value} appointment(s).")
            return 0
    except ValueError as e:
        print(f"Invalid input: {e}")
        return 2
    finally:
        context.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
