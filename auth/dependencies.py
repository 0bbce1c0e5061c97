# auth/dependencies.py
import logging
from typing import Annotated
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from supabase import Client as SupabaseClient
from supabase_auth.errors import AuthApiError

from config import settings
from models_pydantic import UserPydantic

log = logging.getLogger('auth_dependencies')
log.setLevel(logging.INFO if not settings.DEBUG_MODE else logging.DEBUG)
if not log.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - [%(name)s:%(module)s:%(funcName)s:%(lineno)d] - %(message)s')
    handler.setFormatter(formatter)
    log.addHandler(handler)
    log.propagate = False

# Tokens are issued by Supabase auth on the frontend; this service only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def get_supabase_client(request: Request) -> SupabaseClient:
    """Dependency to get the Supabase client from app.state."""
    supabase_client = getattr(request.app.state, 'supabase_client', None)
    if supabase_client is None:
        log.error("Supabase client not found in app.state. Ensure it's initialized at startup in api_main.py.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Authentication service client not available.")
    return supabase_client


async def get_current_supabase_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    supabase: Annotated[SupabaseClient, Depends(get_supabase_client)]
) -> UserPydantic:
    """
    Validates the bearer token with supabase.auth.get_user() and returns the caller.
    Only the stable user id matters downstream.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Missing or invalid authorization header",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        auth_response = supabase.auth.get_user(token)
        supabase_user = auth_response.user if auth_response else None
        if not supabase_user or not supabase_user.id:
            log.warning("supabase.auth.get_user did not return a valid user object.")
            raise credentials_exception

        log.debug(f"User {supabase_user.id} authenticated via supabase.auth.get_user.")
        return UserPydantic(id=str(supabase_user.id), email=supabase_user.email or None)

    except AuthApiError as e:
        log.warning(f"Supabase AuthApiError during token validation: {e.message} (Status: {e.status})")
        raise credentials_exception from e
    except HTTPException:
        raise
    except Exception as e:
        log.error(f"Unexpected error during token validation via supabase.auth.get_user: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            detail="Authentication error") from e
