"""Reset all state in Redis (useful for testing)."""

import asyncio

from moai.config import get_settings
from moai.state.manager import StateManager


async def reset_all_state() -> None:
    """Clear all documents, indexes and inboxes from Redis."""
    settings = get_settings()
    print(f"\n⚠️  WARNING: This will delete ALL data from {settings.redis_url}!")
    response = input("Are you sure? (yes/no): ")

    if response.lower() != "yes":
        print("Cancelled.")
        return

    print("\nResetting state...")

    state_manager = StateManager(settings.redis_url)
    await state_manager.connect()
    await state_manager.flush()
    await state_manager.disconnect()

    print("✓ All state cleared from Redis\n")


if __name__ == "__main__":
    asyncio.run(reset_all_state())
