# deps.py
# Shared route dependencies: caller identity, admin role flags and resolved access scope.

from contextlib import contextmanager
from dataclasses import dataclass

import structlog
from fastapi import Depends, HTTPException, status
from supabase import Client

from auth import get_current_user
from database import get_db
from models import Admin
from core.access_control import AccessDenied, AccessScope, load_admin, resolve_accessible_ids

logger = structlog.get_logger("api")


@dataclass
class AdminContext:
    admin: Admin
    scope: AccessScope


def current_user_id(user_payload: dict = Depends(get_current_user)) -> str:
    user_id = user_payload.get("sub")
    if not user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    return user_id


def get_admin_context(
    user_id: str = Depends(current_user_id),
    db: Client = Depends(get_db),
) -> AdminContext:
    """
    Load the caller's role flags and resolve their scope once per request.
    Callers with no `users` row are rejected; callers with no role get an empty scope.
    """
    admin = load_admin(db, user_id)
    if admin is None:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Admin session not found")
    return AdminContext(admin=admin, scope=resolve_accessible_ids(db, admin))


@contextmanager
def service_call(action: str, **context):
    """
    Map service exceptions onto HTTP responses.

    LookupError -> 404, ValueError -> 400, anything else from the backend -> 500
    "<action> failed: ...". HTTPException and AccessDenied pass through untouched.
    """
    try:
        yield
    except (HTTPException, AccessDenied):
        raise
    except LookupError as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    except ValueError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e))
    except Exception as e:
        event = action.lower().replace(" ", "_") + "_failed"
        logger.error(event, error=str(e), **context)
        raise HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, f"{action} failed: {e}")
