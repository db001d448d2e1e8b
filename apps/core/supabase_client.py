"""
Supabase client construction for the ledger.

Ledger functions run as SECURITY DEFINER in Postgres and are called with the
service role key; the client is built explicitly and handed to the store
rather than kept as a module-level instance.
"""
from typing import Optional, Tuple
import structlog
from supabase import create_client, Client, ClientOptions

from apps.core.settings import Settings, settings as default_settings

logger = structlog.get_logger(__name__)


def _get_supabase_config(config: Settings) -> Tuple[str, str]:
    """
    Retrieve Supabase connection details from settings and ensure they exist.
    """
    url = config.supabase_url
    service_key = config.supabase_service_role_key

    missing = [
        name
        for name, value in (
            ("SUPABASE_URL", url),
            ("SUPABASE_SERVICE_ROLE_KEY", service_key),
        )
        if not value
    ]

    if missing:
        joined = ", ".join(missing)
        raise RuntimeError(
            f"Supabase configuration missing required values: {joined}. "
            "Ensure .env is populated or environment variables are set."
        )

    return url, service_key


def service_client(config: Optional[Settings] = None) -> Client:
    """
    Create a service role Supabase client for ledger operations.

    This client bypasses RLS. The ledger only uses it for the credit RPC
    functions and for reads already scoped by ``user_id``.

    Returns:
        Supabase client with service role permissions
    """
    url, service_key = _get_supabase_config(config or default_settings)

    options = ClientOptions(
        auto_refresh_token=False,
        persist_session=False,
    )
    client = create_client(url, service_key, options=options)

    logger.debug("Created service role Supabase client")
    return client
