from typing import Optional

from supabase import acreate_client, AsyncClient
from labsync.config import Settings, get_settings


async def get_supabase_admin(settings: Optional[Settings] = None) -> AsyncClient:
    """Async service role client. Bypasses RLS, used by the pipeline repository."""
    settings = settings or get_settings()
    return await acreate_client(
        settings.supabase_url,
        settings.supabase_service_role_key
    )
