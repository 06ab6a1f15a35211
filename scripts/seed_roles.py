"""
Seed script to populate the global system role catalogue.

Run this script after database initialization to create the roles every
organization can assign in addition to its own ``owner`` and ``member``:
org_owner, org_admin, project_manager, team_lead, developer, viewer.

Usage:
    python -m scripts.seed_roles
"""
import asyncio

from flowbit.core.database.engine import get_db, init_db
from flowbit.features.permissions.roles import GLOBAL_ROLES, seed_system_roles
from flowbit.utils import get_logger


log = get_logger(__name__)


async def main():
    """Create missing global system roles."""
    log.info("Starting role seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            created = await seed_system_roles(db)
            await db.commit()
        except Exception as e:
            log.error(f"Error seeding roles: {e}", exc_info=True)
            await db.rollback()
            raise

        log.info("Role seeding completed, %d created", created)
        for definition in GLOBAL_ROLES:
            log.info(f"  - {definition.name}: {', '.join(definition.permissions)}")
        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
