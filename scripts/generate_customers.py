"""
Synthetic load generator: keeps inserting random customers into the source
until interrupted.
"""

import asyncio
import logging
import signal
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from datetime import datetime, timezone
from typing import List

from faker import Faker

from core.config import settings
from core.database import create_engine_for, create_session_factory
from core.logging import setup_logging
from mirror.source import CustomerSource
from models.identity import new_record_id
from schemas.customer import Address, Customer

logger = logging.getLogger(__name__)

fake = Faker()


def generate_customers(count: int) -> List[Customer]:
    """Random customers created now"""
    customers = []
    for _ in range(count):
        now = datetime.now(timezone.utc)
        customers.append(
            Customer(
                id=new_record_id(now.timestamp()),
                first_name=fake.first_name(),
                last_name=fake.last_name(),
                email=fake.email(),
                address=Address(
                    line1=fake.street_address(),
                    line2=fake.secondary_address(),
                    postcode=fake.zipcode(),
                    city=fake.city(),
                    state=fake.state_abbr(),
                    country=fake.country_code(),
                ),
                created_at=now,
            )
        )
    return customers


async def run_generator():
    engine = create_engine_for(settings.DATABASE_URL)
    source = CustomerSource(create_session_factory(engine))
    interval = settings.GENERATOR_INTERVAL_MS / 1000
    
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    
    try:
        while not stop.is_set():
            batch_size = fake.random_int(settings.GENERATOR_MIN_BATCH, settings.GENERATOR_MAX_BATCH)
            inserted = await source.insert_many(generate_customers(batch_size))
            logger.info(f"Inserted {inserted} customers")
            
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        
        logger.info("Got stop signal. Graceful shutdown start")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(run_generator())
