"""
Seed script to populate default permissions and roles.

Run this script after database initialization to create:
- Default permissions (users/roles/permissions/posts plus the "manage ..." gates)
- Default roles (admin, editor, user, super-admin)
- The super-admin assignment for the first registered user

Safe to run repeatedly.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.seed import DEFAULT_ROLES, provision
from app.utils import get_logger


log = get_logger(__name__)


async def main():
    """Create tables if needed, then provision permissions and roles."""
    log.info("Starting permission seeding...")
    
    log.info("Initializing database tables...")
    await init_db()
    
    async with AsyncSessionLocal() as db:
        try:
            changed = await provision(db)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            raise
    
    if changed:
        log.info("Permission seeding completed successfully!")
    else:
        log.info("Nothing to do, defaults already present")
    log.info("Default roles: %s", ", ".join(DEFAULT_ROLES))


if __name__ == "__main__":
    asyncio.run(main())
