"""Shared test fixtures and configuration for the sync client."""
import sys
import os

# Ensure the client package is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

os.environ.setdefault("SYNC_SERVER_URL", "http://sync.test")
