from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

from toolbox.services.credit_store import ensure_credit_indexes, seed_app_registry

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

def _env_flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")

class Database:
    """MongoDB connection owner. Created by the app lifespan, not at import."""

    def __init__(self, mongo_url: str = None, db_name: str = None):
        self.mongo_url = mongo_url or os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
        self.db_name = db_name or os.environ.get('DB_NAME', 'dacapo_tools')
        self.client: AsyncIOMotorClient = None
        self.db = None

    async def connect(self):
        try:
            # tz_aware so stored timestamps come back as UTC datetimes
            self.client = AsyncIOMotorClient(self.mongo_url, tz_aware=True)
            self.db = self.client[self.db_name]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {self.db_name}")

            await self._create_indexes()
            if _env_flag("SEED_APP_REGISTRY"):
                await seed_app_registry(self.db)
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for credit records, ledger and registry."""
        try:
            await ensure_credit_indexes(self.db)
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist with different options, log but don't fail
            logger.warning(f"Index creation note: {e}")

