"""
Supabase client for session persistence
"""
import os
from typing import Optional

from supabase import create_client, Client
from dotenv import load_dotenv

# Load environment variables
load_dotenv()
load_dotenv('../.env')  # Also try parent directory

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set, in
    which case sessions live in memory only.
    """
    global _supabase_client

    if _supabase_client is None:
        url = os.getenv("SUPABASE_URL")
        # Service role key: the backend writes sessions on behalf of users
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            return None

        _supabase_client = create_client(url, key)

    return _supabase_client
