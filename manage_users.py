#!/usr/bin/env python3
"""
User Management Utility

This script provides utilities to manage user accounts:
- List all users
- Activate or deactivate an account
- Reconcile collections that reference deleted books
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from motor.motor_asyncio import AsyncIOMotorClient

from api.database import APIDatabaseService
from utilities.config import config
from utilities.logger import setup_logging


def _build_service(client: AsyncIOMotorClient) -> APIDatabaseService:
    return APIDatabaseService(
        client[config.mongodb_database],
        users_collection=config.users_collection,
        books_collection=config.books_collection,
        use_transactions=config.mongodb_transactions
    )


async def list_all_users(service: APIDatabaseService):
    """List all users in the database."""
    print("\n" + "=" * 80)
    print("📋 ALL USERS")
    print("=" * 80)

    users = await service.list_users()
    if not users:
        print("❌ No users found in database")
        return

    print(f"✅ Found {len(users)} users:")
    print()

    for i, user in enumerate(users, 1):
        state = "active" if user.is_active else "inactive"
        print(f"{i:3d}. {user.username} ({state})")
        print(f"     ID: {user.id}")
        print(f"     Books: {len(user.owned_book_ids)}")
        print(f"     Created: {user.created_at}")
        print()


async def set_active(service: APIDatabaseService, username: str, is_active: bool):
    """Enable or disable an account."""
    found = await service.set_user_active(username, is_active)
    if not found:
        print(f"❌ User not found: {username}")
        sys.exit(1)

    state = "activated" if is_active else "deactivated"
    print(f"✅ User {username} {state}")


async def reconcile_collections(service: APIDatabaseService):
    """Drop book ids that no longer point at one of the user's books."""
    print("\n🧹 RECONCILING COLLECTIONS")
    print("=" * 80)

    users = await service.list_users()
    total_removed = 0

    for user in users:
        removed = await service.reconcile_collection(user.id)
        if removed:
            total_removed += len(removed)
            print(f"🗑️  {user.username}: removed {len(removed)} dangling ids")

    if total_removed:
        print(f"✅ Reconciliation completed, {total_removed} ids removed")
    else:
        print("ℹ️  All collections are consistent")


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print("Usage: python manage_users.py [list|activate|deactivate|reconcile] [username]")
        print()
        print("Commands:")
        print("  list        - List all users")
        print("  activate    - Re-enable a user account")
        print("  deactivate  - Disable a user account")
        print("  reconcile   - Remove dangling book ids from every collection")
        print()
        print("Examples:")
        print("  python manage_users.py list")
        print("  python manage_users.py deactivate alice")
        print("  python manage_users.py reconcile")
        sys.exit(1)

    command = sys.argv[1].lower()

    # Setup logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    if command not in ("list", "activate", "deactivate", "reconcile"):
        print(f"❌ Unknown command: {command}")
        print("Available commands: list, activate, deactivate, reconcile")
        sys.exit(1)

    if command in ("activate", "deactivate") and len(sys.argv) < 3:
        print(f"❌ Error: username required for {command} command")
        print(f"Usage: python manage_users.py {command} <username>")
        sys.exit(1)

    client = AsyncIOMotorClient(config.mongodb_url, tz_aware=True)
    try:
        service = _build_service(client)

        if command == "list":
            await list_all_users(service)
        elif command == "activate":
            await set_active(service, sys.argv[2], True)
        elif command == "deactivate":
            await set_active(service, sys.argv[2], False)
        elif command == "reconcile":
            await reconcile_collections(service)
    finally:
        client.close()


if __name__ == "__main__":
    asyncio.run(main())
