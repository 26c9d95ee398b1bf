"""
Seed a test company (Lone Star Coatings) into the database.

Usage:
    python scripts/seed_test_company.py
    python scripts/seed_test_company.py --location-id loc_abc123 --api-key pit-xxxx
"""
import argparse
import asyncio
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from jobflow.config import get_settings
from jobflow.models.company import Company

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TEST_COMPANY_NAME = "Lone Star Coatings"


async def seed(location_id: str, api_key: str, timezone_name: str):
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        result = await session.execute(
            select(Company).where(Company.ghl_location_id == location_id)
        )
        existing = result.scalar_one_or_none()

        if existing:
            logger.info("Company for location %s already exists (id=%s). Skipping.", location_id, existing.id)
        else:
            company = Company(
                name=TEST_COMPANY_NAME,
                ghl_location_id=location_id,
                ghl_api_key=api_key or None,
                ghl_appt_calendar="test-appointment-calendar",
                ghl_install_calendar="test-install-calendar",
                timezone_name=timezone_name,
                is_active=True,
            )
            session.add(company)
            await session.commit()
            logger.info("Created test company %s (id=%s)", TEST_COMPANY_NAME, company.id)
            logger.info("Use this id in the X-Company-ID header for dashboard calls")

    await engine.dispose()


async def main():
    parser = argparse.ArgumentParser(description="Seed a test company")
    parser.add_argument("--location-id", default="loc_test_lonestar")
    parser.add_argument("--api-key", default="")
    parser.add_argument("--timezone", default="America/Chicago")
    args = parser.parse_args()
    await seed(args.location_id, args.api_key, args.timezone)


if __name__ == "__main__":
    asyncio.run(main())
