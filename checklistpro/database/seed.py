"""
Database Seeding

Creates the administrator account, the storefront categories and the sample
checklist catalog. Skips everything when users already exist.

Usage:
    checklistpro-seed
    python -m checklistpro.database.seed
"""

import asyncio
from decimal import Decimal
from typing import Any, Dict, List

import structlog
from sqlalchemy import func, select

from checklistpro.config import get_settings
from checklistpro.config.logging import configure_logging
from checklistpro.database.connection import close_database, get_db, init_database
from checklistpro.database.models import Category, Product, User, UserRole
from checklistpro.services.auth import hash_password

logger = structlog.get_logger(__name__)
settings = get_settings()


CATEGORIES: List[Dict[str, str]] = [
    {"name": "Food Service", "slug": "food-service", "icon": "🍽️",
     "description": "Restaurant and food business checklists"},
    {"name": "Healthcare", "slug": "healthcare", "icon": "🏥",
     "description": "Medical and therapy practice checklists"},
    {"name": "Media & Content", "slug": "media-content", "icon": "📺",
     "description": "Content creation and media production"},
    {"name": "Retail", "slug": "retail", "icon": "🛍️",
     "description": "Retail and e-commerce business setup"},
    {"name": "Consulting", "slug": "consulting", "icon": "💼",
     "description": "Professional services and consulting"},
]

PRODUCTS: List[Dict[str, Any]] = [
    {
        "name": "Food Truck Business Checklist",
        "slug": "food-truck-business-checklist",
        "category": "food-service",
        "description": "Complete guide to launching your food truck from concept to first sale",
        "icon": "🚚",
        "price": Decimal("29.99"),
        "original_price": Decimal("49.99"),
        "version": "2.1",
        "download_count": 3420,
        "is_featured": True,
        "formats": {
            "pdf": "food-truck-checklist-v2.1.pdf",
            "markdown": "food-truck-checklist-v2.1.md",
            "excel": "food-truck-checklist-v2.1.xlsx",
        },
        "features": ["150+ step checklist", "Permit templates", "Menu planning tools", "Supplier directory"],
        "tags": ["food truck", "restaurant", "permits"],
    },
    {
        "name": "Therapy Practice Checklist",
        "slug": "therapy-practice-checklist",
        "category": "healthcare",
        "description": "Step-by-step guide to starting your independent therapy practice",
        "icon": "🧠",
        "price": Decimal("39.99"),
        "version": "1.8",
        "download_count": 2150,
        "formats": {
            "pdf": "therapy-practice-checklist-v1.8.pdf",
            "markdown": "therapy-practice-checklist-v1.8.md",
            "word": "therapy-practice-checklist-v1.8.docx",
        },
        "features": ["200+ step checklist", "Insurance forms", "Client intake templates", "HIPAA compliance guide"],
        "tags": ["therapy", "private practice", "hipaa"],
    },
    {
        "name": "Podcast Production Workflow",
        "slug": "podcast-production-workflow",
        "category": "media-content",
        "description": "Professional podcast setup and production system",
        "icon": "🎙️",
        "price": Decimal("19.99"),
        "version": "3.0",
        "download_count": 5670,
        "is_featured": True,
        "formats": {
            "pdf": "podcast-workflow-v3.0.pdf",
            "markdown": "podcast-workflow-v3.0.md",
            "notion": "podcast-workflow-v3.0.csv",
        },
        "features": ["Equipment checklist", "Recording templates", "Editing workflow", "Distribution guide"],
        "tags": ["podcast", "audio", "content"],
    },
    {
        "name": "Specialty Retail Shop Package",
        "slug": "specialty-retail-shop-package",
        "category": "retail",
        "description": "Everything you need to open your boutique retail store",
        "icon": "🏪",
        "price": Decimal("34.99"),
        "version": "1.5",
        "download_count": 1890,
        "formats": {
            "pdf": "retail-shop-checklist-v1.5.pdf",
            "excel": "retail-shop-checklist-v1.5.xlsx",
            "googlesheets": "retail-shop-checklist-v1.5.csv",
        },
        "features": ["175+ step checklist", "Inventory templates", "POS setup guide", "Marketing calendar"],
        "tags": ["retail", "boutique", "inventory"],
    },
    {
        "name": "Freelance Designer Toolkit",
        "slug": "freelance-designer-toolkit",
        "category": "consulting",
        "description": "Complete system for launching and managing your design business",
        "icon": "🎨",
        "price": Decimal("24.99"),
        "version": "2.5",
        "download_count": 4320,
        "formats": {
            "pdf": "designer-toolkit-v2.5.pdf",
            "figma": "designer-toolkit-v2.5.fig",
            "notion": "designer-toolkit-v2.5.csv",
        },
        "features": ["Client onboarding process", "Contract templates", "Pricing calculator", "Portfolio guidelines"],
        "tags": ["design", "freelance", "contracts"],
    },
    {
        "name": "Online Course Creation",
        "slug": "online-course-creation",
        "category": "media-content",
        "description": "Build and launch your online course from scratch",
        "icon": "📚",
        "price": Decimal("44.99"),
        "original_price": Decimal("59.99"),
        "version": "4.0",
        "download_count": 6890,
        "is_featured": True,
        "formats": {
            "pdf": "course-creation-v4.0.pdf",
            "markdown": "course-creation-v4.0.md",
            "trello": "course-creation-v4.0.csv",
        },
        "features": ["Course planning framework", "Video production checklist", "Marketing templates", "Student engagement tools"],
        "tags": ["online course", "education", "video"],
    },
]


async def seed_database() -> bool:
    """
    Seed an empty database.

    Returns:
        True if data was written, False if the database already had users
    """
    async with get_db() as db:
        user_count = (await db.execute(select(func.count(User.id)))).scalar() or 0
        if user_count > 0:
            logger.info("Database already contains data, skipping seeding")
            return False

        logger.info("Seeding database with initial data")

        db.add(
            User(
                name=settings.admin.name,
                email=settings.admin.email.lower(),
                password_hash=hash_password(settings.admin.password.get_secret_value()),
                role=UserRole.ADMIN,
                is_active=True,
            )
        )

        categories = {}
        for data in CATEGORIES:
            category = Category(is_active=True, **data)
            db.add(category)
            categories[data["slug"]] = category
        await db.flush()
        logger.info("Categories created", count=len(categories))

        for data in PRODUCTS:
            data = dict(data)
            category = categories[data.pop("category")]
            is_featured = data.pop("is_featured", False)
            db.add(
                Product(
                    category_id=category.id,
                    short_description=data["description"],
                    is_active=True,
                    is_featured=is_featured,
                    view_count=0,
                    rating_count=0,
                    rating_average=0.0,
                    rating_distribution={str(star): 0 for star in range(1, 6)},
                    **data,
                )
            )
        logger.info("Sample products created", count=len(PRODUCTS))

    logger.info("Database seeding completed successfully")
    return True


async def main() -> None:
    configure_logging()
    await init_database()
    try:
        await seed_database()
    finally:
        await close_database()


def run() -> None:
    """Console script entry point"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
