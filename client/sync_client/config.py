"""Client configuration from the environment / .env"""
import os
from dotenv import load_dotenv

load_dotenv()

SYNC_SERVER_URL = os.getenv("SYNC_SERVER_URL", "http://localhost:3000").strip().rstrip("/")
SYNC_CACHE_PATH = os.getenv("SYNC_CACHE_PATH", "./data/client_cache.db").strip()
RECONNECT_DELAY_S = float(os.getenv("SYNC_RECONNECT_DELAY_S", "3"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

PAGE_SIZE = 100
