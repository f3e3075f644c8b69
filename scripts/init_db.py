import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from mirror.runner import SyncRunner

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to databases...")
    runner = SyncRunner.from_settings(settings)
    
    try:
        logger.info("Creating tables...")
        await runner.init_db()
    finally:
        for engine in {id(e): e for e in runner.engines}.values():
            await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
