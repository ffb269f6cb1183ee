from fastapi import Depends, Query
from services.cache import get_cache_client
from auth.security import get_current_client
from data.database import get_db

MAX_PAGE_SIZE = 1000


class Pagination:
    """limit/offset query parameters shared by the list endpoints."""
    def __init__(
        self,
        limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(default=0, ge=0),
    ):
        self.limit = limit
        self.offset = offset


# --- DEPENDENCY INJECTION SETUP ---
CLIENT_AUTH = Depends(get_current_client)
DB_DEPENDENCY = Depends(get_db)
CACHE_CLIENT = Depends(get_cache_client)
PAGINATION = Depends(Pagination)
