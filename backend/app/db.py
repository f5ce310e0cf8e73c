"""
Database client configuration.
Uses Supabase (PostgreSQL via PostgREST) with the service-role key; access
control happens in the API layer, not through RLS.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

from app.services.employee_store import EmployeeStore

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
    raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment variables")

# Admin client for service-level operations (bypasses RLS)
supabase_admin: Client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)


def get_employee_store() -> EmployeeStore:
    """FastAPI dependency: the record store over the admin client."""
    return EmployeeStore(supabase_admin)
