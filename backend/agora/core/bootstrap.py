"""
Startup seeding: default categories and the initial admin account.
"""

from loguru import logger
from slugify import slugify
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.config import Settings, settings as default_settings
from agora.models.forum import ForumCategory
from agora.modules.accounts import AccountService


async def seed_database(db: AsyncSession, settings: Settings = default_settings) -> None:
    """Seed an empty forum. Safe to run on every startup."""
    category_count = await db.scalar(select(func.count(ForumCategory.id)))
    if not category_count and settings.forum_default_categories:
        for order, name in enumerate(settings.forum_default_categories):
            db.add(ForumCategory(name=name, slug=slugify(name), sort_order=order))
        await db.flush()
        logger.info(f"Seeded {len(settings.forum_default_categories)} default categories")

    if settings.admin_username and settings.admin_email and settings.admin_password:
        await AccountService(db).bootstrap_admin(
            settings.admin_username,
            settings.admin_email,
            settings.admin_password,
        )
