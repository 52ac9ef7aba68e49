"""Create the tables and the first super admin.

Run with: python -m scripts.init_admin
Reads BSPCP_INITIAL_ADMIN_USERNAME, BSPCP_INITIAL_ADMIN_EMAIL and
BSPCP_INITIAL_ADMIN_PASSWORD from the environment (or .env).
"""

import asyncio
import sys

from sqlalchemy import func, or_, select

from bspcp.core.auth import ADMIN_BCRYPT_ROUNDS, MIN_PASSWORD_LENGTH, hash_password
from bspcp.core.config import Settings, settings
from bspcp.core.database import Database
from bspcp.models import Admin, AdminRole


async def init_admin(settings: Settings) -> int:
    password = settings.initial_admin_password
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        print(f"Set BSPCP_INITIAL_ADMIN_PASSWORD (at least {MIN_PASSWORD_LENGTH} characters).", file=sys.stderr)
        return 1

    database = Database(settings.database_url, echo=settings.database_echo)
    try:
        # Create tables (in dev; production manages the schema separately)
        await database.create_all()

        async with database.session_factory() as db:
            result = await db.execute(
                select(Admin).where(
                    or_(
                        Admin.username == settings.initial_admin_username,
                        func.lower(Admin.email) == settings.initial_admin_email.lower(),
                    )
                )
            )
            if result.scalar_one_or_none():
                print("Initial admin already exists - skipping.")
                return 0

            admin = Admin(
                username=settings.initial_admin_username,
                email=settings.initial_admin_email.lower(),
                password_hash=hash_password(password, ADMIN_BCRYPT_ROUNDS),
                role=AdminRole.SUPER_ADMIN,
                first_name="System",
                last_name="Administrator",
            )
            db.add(admin)
            await db.commit()

        print(f"Created super admin: {admin.username} <{admin.email}>")
        return 0
    finally:
        await database.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(init_admin(settings)))
