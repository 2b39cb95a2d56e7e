"""
Supabase client configuration.
Tasks, categories and users live in Supabase PostgreSQL; auth is Supabase Auth.
"""

import os

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

if not SUPABASE_URL or not SUPABASE_KEY:
    raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set in environment variables")

# Anon-key client, used to verify tokens with Supabase Auth
supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)

# Service-role client for the API's own reads and writes (bypasses RLS).
# The webhook and scheduler endpoints have no user session.
supabase_admin: Client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY) if SUPABASE_SERVICE_KEY else None
