from typing import Optional
import logging

from supabase import create_client, Client

logger = logging.getLogger(__name__)


class SupabaseService:
    """Lazily created Supabase client; stays None when the project is not configured"""

    def __init__(self, url: Optional[str], key: Optional[str]):
        self.url = url
        self.key = key
        self.client: Optional[Client] = None
        self.initialize()

    def initialize(self):
        # Placeholder URLs from example env files count as not configured
        if not self.url or not self.key or self.url.startswith("https://xxxxx"):
            logger.warning("Supabase URL not configured - falling back to in-memory storage")
            self.client = None
            return

        try:
            self.client = create_client(self.url, self.key)
            logger.info("Supabase client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase client: {e}")
            self.client = None

    def get_client(self) -> Optional[Client]:
        if not self.client:
            self.initialize()
        return self.client
