from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi import Depends, HTTPException, status
from config import config
import hmac
import logging

logger = logging.getLogger(__name__)

# auto_error=False so a missing header gets the same 401 as a bad token
bearer_scheme = HTTPBearer(auto_error=False)


def is_known_client(token: str) -> bool:
    return any(hmac.compare_digest(token.encode(), known.encode()) for known in config.valid_tokens)


def get_current_client(credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme)) -> str:
    """
    Gate for the marketing site and admin tools calling this service. Tokens
    come from VALID_TOKENS; visitors themselves are never authenticated here.
    """
    if credentials is None or credentials.scheme.lower() != "bearer" or not is_known_client(credentials.credentials):
        logger.info("Rejected request with missing or unknown client token.")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing Bearer token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials
