"""
Session Store Verification Script

Inspects the file session store: lists stored sessions and cancelled
order markers, flags entries that no longer decode, and optionally
applies the expiry rules or wipes the store.

Run from project root: python scripts/verify.py [--sweep] [--clear]

Author: Khalil Bannouri
Version: 1.0.0
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime

from pydantic import ValidationError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ordersync.core.config import get_settings
from ordersync.core.exceptions import DataIntegrityError
from ordersync.schemas import CancelledOrderMarker
from ordersync.services.sessions import FileSessionStorage, SessionRepository, cart_total
from ordersync.services.sessions.repository import decode_session


async def verify_sessions(path: str, sweep: bool = False, clear: bool = False) -> bool:
    """Verify session file integrity."""
    settings = get_settings()
    prefix = settings.session_key_prefix

    print("=" * 60)
    print("🔍 SESSION STORE VERIFICATION REPORT")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {path}")
    print("=" * 60)

    if not os.path.exists(path):
        print("\n❌ Session file not found!")
        print("   Start a customer surface first: python -m ordersync customer 1")
        return False

    storage = FileSessionStorage(path, settings.session_lock_timeout)
    try:
        raw = storage.read_raw()
        print("\n✅ File loaded successfully!")
    except DataIntegrityError as e:
        print(f"\n❌ {e.message}")
        return False

    sessions, markers, malformed = [], [], []
    for key, value in raw.items():
        try:
            if key.startswith(f"{prefix}:session:"):
                sessions.append((key, decode_session(value)))
            elif key.startswith(f"{prefix}:cancelled:"):
                markers.append((key, CancelledOrderMarker.model_validate_json(value)))
        except (DataIntegrityError, ValidationError, ValueError):
            malformed.append(key)

    print("\n📊 STATISTICS:")
    print(f"   Stored keys: {len(raw)}")
    print(f"   Sessions: {len(sessions)}")
    print(f"   Cancelled markers: {len(markers)}")

    if malformed:
        print(f"\n⚠️ {len(malformed)} malformed entries: {malformed}")
    else:
        print("\n✅ Every entry decodes")

    if sessions:
        print("\n📋 SESSIONS:")
        print("-" * 60)
        for key, session in sessions:
            order = session.order_number or session.order_id or "-"
            print(
                f"   {session.key:<14} v{session.version:<3} "
                f"cart={len(session.cart)} (${cart_total(session.cart):.2f}) "
                f"name={session.customer_name or '-'} order={order}"
            )

    for key, marker in markers:
        print(f"   🚫 table {marker.table_number}: order {marker.order_id} cancelled at {marker.timestamp:%H:%M:%S}")

    repository = SessionRepository(
        storage,
        ttl_seconds=settings.session_ttl_seconds,
        cancelled_cooldown_seconds=settings.cancelled_order_cooldown_seconds,
        prefix=prefix,
    )
    if sweep:
        wiped = await repository.sweep()
        print(f"\n🧹 Sweep removed {len(wiped)} stale session(s): {wiped}")
    if clear:
        removed = await repository.clear_all()
        print(f"\n🗑️ Cleared {removed} key(s)")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION COMPLETE")
    print("=" * 60)
    return not malformed


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Verify the file session store")
    parser.add_argument("--path", default=settings.session_file_path, help="Session file")
    parser.add_argument("--sweep", action="store_true", help="Wipe expired sessions")
    parser.add_argument("--clear", action="store_true", help="Wipe every session and marker")
    args = parser.parse_args()
    ok = asyncio.run(verify_sessions(args.path, args.sweep, args.clear))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
