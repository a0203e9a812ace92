# scripts/seed_fleet.py
"""
Create tables and load the fleet catalog.
Re-running is safe: existing vehicles, destinations and users are skipped.

Usage:
  python scripts/seed_fleet.py --vehicle Van1 --vehicle Van2 \
      --destination Clinic --destination Depot \
      --user "Alice:123456789" --user "Carol"      # без Telegram id — прокси-сотрудник
"""

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from fleetbot.config import settings
from fleetbot.db import engine, init_db
from fleetbot.errors import InvalidName
from fleetbot.store import FleetStore


def parse_user(raw: str) -> tuple[str, int | None]:
    name, _, telegram_id = raw.partition(":")
    return name.strip(), int(telegram_id) if telegram_id.strip() else None


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description="Seed the fleet database")
    parser.add_argument("--vehicle", action="append", default=[])
    parser.add_argument("--destination", action="append", default=[])
    parser.add_argument("--user", action="append", default=[], help="NAME or NAME:TELEGRAM_ID")
    args = parser.parse_args(argv)

    print(f"📡 Database: {settings.DATABASE_URL}")
    init_db()
    print("✅ Tables ready")

    store = FleetStore(engine)

    for name in args.vehicle:
        if store.get_vehicle(name):
            print(f"   · vehicle {name} exists")
            continue
        try:
            store.add_vehicle(name)
        except InvalidName as exc:
            print(f"   ✗ vehicle skipped: {exc.message}")
            continue
        print(f"   ✓ vehicle {name}")

    for name in args.destination:
        if store.get_destination(name):
            print(f"   · destination {name} exists")
            continue
        try:
            store.add_destination(name)
        except InvalidName as exc:
            print(f"   ✗ destination skipped: {exc.message}")
            continue
        print(f"   ✓ destination {name}")

    proxies = {u.name for u in store.list_users() if u.telegram_id is None}
    for raw in args.user:
        name, telegram_id = parse_user(raw)
        if telegram_id is not None and store.get_user_by_telegram_id(telegram_id):
            print(f"   · user {name} ({telegram_id}) exists")
            continue
        if telegram_id is None and name in proxies:
            print(f"   · proxy user {name} exists")
            continue
        user = store.create_user(name, telegram_id)
        print(f"   ✓ user {user.name} id={user.id} telegram_id={user.telegram_id}")

    print("\n🎉 Done. Start both bots and the API with: python run.py")


if __name__ == "__main__":
    main()
