#!/usr/bin/env python3
"""Script to create an admin user."""
import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from portal.core.config import settings
from portal.core.database import AsyncSessionLocal
from portal.core.errors import ValidationError
from portal.models.enums import UserRole
from portal.services.auth_service import create_account, email_taken


async def create_admin(email: str, password: str, full_name: str = "Administrator"):
    async with AsyncSessionLocal() as db:
        if await email_taken(db, email):
            print(f"User {email} already exists")
            return

        try:
            auth_user, profile = await create_account(db, email, password, full_name, role=UserRole.ADMIN)
        except ValidationError as e:
            print(f"Could not create admin: {e.message}")
            sys.exit(1)

        print("Admin created successfully!")
        print(f"  Email: {auth_user.email}")
        print(f"  Role: {profile.role.value}")


if __name__ == "__main__":
    email = sys.argv[1] if len(sys.argv) > 1 else (settings.FIRST_ADMIN_EMAIL or "admin@example.com")
    password = sys.argv[2] if len(sys.argv) > 2 else "change-me-now"
    full_name = sys.argv[3] if len(sys.argv) > 3 else "Administrator"

    asyncio.run(create_admin(email, password, full_name))
