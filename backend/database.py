from fastapi import Depends, HTTPException
from supabase import Client, ClientOptions, create_client
import os
from dotenv import load_dotenv

from auth import get_current_user_token

load_dotenv()

# Global cache for long-lived clients
# Key: role name, Value: supabase Client
_client_cache = {}

SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "").strip()

# Service Role support for scripts and auth-admin calls (Bypass RLS)
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()


def _client_options() -> ClientOptions:
    # Server side: never persist or refresh sessions, the caller's JWT is forwarded per request
    return ClientOptions(auto_refresh_token=False, persist_session=False)


def create_user_client(access_token: str) -> Client:
    """
    Build a client that talks to PostgREST as the calling user.
    Row-level security on the hosted backend applies to every query made with it.
    """
    if not SUPABASE_URL or not SUPABASE_ANON_KEY:
        raise HTTPException(status_code=500, detail="Supabase not configured.")

    client = create_client(SUPABASE_URL, SUPABASE_ANON_KEY, options=_client_options())
    client.postgrest.auth(access_token)
    return client


def get_service_client() -> Client:
    """Returns client with SERVICE ROLE key - bypasses RLS for system operations."""
    if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
        raise RuntimeError("Missing SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY in env.")

    if "service" not in _client_cache:
        _client_cache["service"] = create_client(
            SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, options=_client_options()
        )

    return _client_cache["service"]


def is_configured() -> bool:
    return bool(SUPABASE_URL and SUPABASE_ANON_KEY)


def get_db(token_info: tuple = Depends(get_current_user_token)):
    """
    Dependency that gets a request-scoped Supabase client bound to the caller's token.
    """
    _, token = token_info
    yield create_user_client(token)


def has_service_role() -> bool:
    return bool(SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY)
