"""
User context API routes ("/api/me").

Why:
    Expose who the signed-in actor is, the groups it may act on and its own
    profile. The handlers stay thin: they read the actor from
    ``request.state.user`` (set by the auth middleware), call the service and
    translate the error taxonomy into HTTP statuses.

Responses:
    - Success: ``{"data": ..., "message": ...}``.
    - Errors: ``{"error": <code>, "detail": <text>}``.
    All responses carry ``Cache-Control: private, no-store``; the payloads are
    personal.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field

from backend.storage.avatars import LocalAvatarStorage
from backend.storage.config import get_avatar_max_upload_bytes, get_avatar_storage_root
from backend.usercontext.config import build_service
from backend.usercontext.domain import to_public
from backend.usercontext.errors import (
    GroupNotFound,
    InvalidData,
    InvalidOperation,
    NoActiveGroups,
    NotAuthenticated,
    NotAuthorized,
    NotFound,
    NotLinked,
    PartialError,
    UserContextError,
    UserContextSentinel,
    find_error,
    is_not_linked,
)
from backend.usercontext.service import UserContextService

from .security import csrf_violation

logger = logging.getLogger(__name__)

usercontext_router = APIRouter(prefix="/api/me", tags=["User context"])

_STATUS_BY_SENTINEL = (
    (NotAuthenticated, 401),
    (NotAuthorized, 403),
    (NotFound, 404),
    (GroupNotFound, 404),
    (NotLinked, 404),
    (InvalidData, 400),
    (InvalidOperation, 400),
    (NoActiveGroups, 400),
)


"""Lazy service accessor to avoid import-time DB checks in tests."""
_SERVICE: Optional[UserContextService] = None


def _get_service() -> UserContextService:
    global _SERVICE
    if _SERVICE is None:
        _SERVICE = build_service()
    return _SERVICE


def set_service(service: Optional[UserContextService]) -> None:
    """Allow tests to swap the service (``None`` rebuilds from the environment)."""
    global _SERVICE
    _SERVICE = service


def _private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def _ok(data: Any, message: str, **extra: Any) -> JSONResponse:
    body: Dict[str, Any] = {"data": data, "message": message}
    body.update(extra)
    return JSONResponse(body, status_code=200, headers=_private_no_store())


def _private_error(code: str, detail: str, *, status_code: int) -> JSONResponse:
    return JSONResponse({"error": code, "detail": detail}, status_code=status_code, headers=_private_no_store())


def error_response(exc: Exception) -> JSONResponse:
    """Map a service failure onto an HTTP error response."""
    sentinel = find_error(exc, UserContextSentinel)
    if sentinel is not None:
        for kind, status_code in _STATUS_BY_SENTINEL:
            if isinstance(sentinel, kind):
                return _private_error(sentinel.code, str(sentinel), status_code=status_code)
    partial = find_error(exc, PartialError)
    if partial is not None:
        logger.warning("usercontext.api.partial_failure op=%s failure=%d", partial.op, partial.failure_count)
        return _private_error("partial_failure", str(partial), status_code=502)
    logger.error("usercontext.api.internal_error reason=%s detail=%s", exc.__class__.__name__, exc)
    return _private_error("internal_error", "internal server error", status_code=500)


def _actor_id(request: Request) -> Optional[int]:
    user = getattr(request.state, "user", None) or {}
    account_id = user.get("account_id") if isinstance(user, dict) else None
    try:
        return int(account_id) if account_id is not None else None
    except (TypeError, ValueError):
        return None


def _parse_group_id(value: str) -> Optional[int]:
    """Parse a path id without letting FastAPI answer 422."""
    try:
        group_id = int(value)
    except (TypeError, ValueError):
        return None
    return group_id if group_id > 0 else None


def _csrf_error(request: Request) -> Optional[JSONResponse]:
    if csrf_violation(request):
        return _private_error("forbidden", "csrf_violation", status_code=403)
    return None


# --- Request models ---------------------------------------------------------------

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(default=None, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=2000)


# --- Identity ---------------------------------------------------------------------

@usercontext_router.get("")
@usercontext_router.get("/")
async def get_current_user(request: Request):
    try:
        account = _get_service().get_current_user(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(to_public(account), "Current user retrieved successfully")


@usercontext_router.get("/person")
async def get_current_person(request: Request):
    try:
        person = _get_service().get_current_person(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(to_public(person), "Current person retrieved successfully")


@usercontext_router.get("/staff")
async def get_current_staff(request: Request):
    try:
        staff = _get_service().get_current_staff(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(to_public(staff), "Current staff retrieved successfully")


@usercontext_router.get("/teacher")
async def get_current_teacher(request: Request):
    try:
        teacher = _get_service().get_current_teacher(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(to_public(teacher), "Current teacher retrieved successfully")


# --- Profile ----------------------------------------------------------------------

@usercontext_router.get("/profile")
async def get_profile(request: Request):
    try:
        profile = _get_service().get_current_profile(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(profile, "Current profile retrieved successfully")


@usercontext_router.put("/profile")
async def update_profile(request: Request, payload: ProfileUpdate):
    """Update name, username and bio of the signed-in actor.

    Behavior:
        - Omitted fields stay unchanged; "" for username clears it.
        - Creating the person record requires both first and last name (400).
    """
    csrf = _csrf_error(request)
    if csrf:
        return csrf
    try:
        profile = _get_service().update_current_profile(_actor_id(request), payload.model_dump(exclude_none=True))
    except Exception as exc:
        return error_response(exc)
    return _ok(profile, "Profile updated successfully")


async def _read_request_stream_with_limit(request: Request, limit: int) -> Tuple[Optional[bytes], Optional[str]]:
    """Consume the request stream without buffering more than ``limit`` bytes."""
    total = 0
    buffer = bytearray()
    async for chunk in request.stream():
        if not chunk:
            continue
        buffer.extend(chunk)
        total += len(chunk)
        if total > limit:
            return None, "size_exceeded"
    if not buffer:
        return None, "empty_body"
    return bytes(buffer), None


@usercontext_router.post("/profile/avatar")
async def upload_avatar(request: Request):
    """Upload a new avatar image as the raw request body.

    Behavior:
        - Bodies above AVATAR_MAX_UPLOAD_BYTES (default 5 MiB) are 400
          ``size_exceeded``; an empty body is 400 ``empty_body``.
        - The image type is sniffed from the content (JPEG, PNG, WebP); the
          Content-Type header is not trusted.
        - The server names the file ``<account_id>_<random><ext>``; the
          replaced avatar file is removed after the profile update committed.
    """
    csrf = _csrf_error(request)
    if csrf:
        return csrf
    body, body_error = await _read_request_stream_with_limit(request, get_avatar_max_upload_bytes())
    if body_error:
        return _private_error("bad_request", body_error, status_code=400)
    try:
        profile = _get_service().upload_avatar(_actor_id(request), body)
    except Exception as exc:
        return error_response(exc)
    return _ok(profile, "Avatar uploaded successfully")


@usercontext_router.delete("/profile/avatar")
async def delete_avatar(request: Request):
    csrf = _csrf_error(request)
    if csrf:
        return csrf
    try:
        profile = _get_service().delete_avatar(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok(profile, "Avatar deleted successfully")


@usercontext_router.get("/profile/avatar/{filename}")
async def get_avatar_file(request: Request, filename: str):
    """Serve the actor's own avatar file; other files are 403."""
    try:
        key = _get_service().avatar_key_for(_actor_id(request), filename)
    except Exception as exc:
        return error_response(exc)
    storage = LocalAvatarStorage(get_avatar_storage_root())
    try:
        path = storage.resolve_path(key)
    except ValueError:
        return _private_error("forbidden", "access denied", status_code=403)
    if not path.is_file():
        return _private_error("not_found", "avatar file not found", status_code=404)
    return FileResponse(path, headers=_private_no_store())


# --- Groups -----------------------------------------------------------------------

def _substituted_ids(service: UserContextService, actor_id: Optional[int]) -> Set[int]:
    """Ids of groups the actor covers today as a plain substitute."""
    try:
        staff = service.get_current_staff(actor_id)
    except UserContextError as exc:
        if is_not_linked(exc):
            return set()
        raise
    try:
        return service.get_substituted_group_ids(staff.id)
    except UserContextError as exc:
        # The groups themselves are already resolved; only the flag degrades.
        logger.warning("usercontext.api.substitution_flags_failed staff_id=%s reason=%s", staff.id, exc.err.__class__.__name__)
        return set()


@usercontext_router.get("/groups")
async def get_my_groups(request: Request):
    """Education groups of the actor (teacher assignments and substitutions).

    Behavior:
        - Each group carries ``via_substitution``.
        - When some substitution groups could not be loaded the available
          groups are returned with a ``partial_failure`` report.
    """
    service = _get_service()
    actor_id = _actor_id(request)
    try:
        result = service.get_my_groups(actor_id)
        substituted = _substituted_ids(service, actor_id) if len(result) else set()
    except Exception as exc:
        return error_response(exc)
    items: List[Dict[str, Any]] = []
    for group in result.groups:
        item = to_public(group)
        item["via_substitution"] = group.id in substituted
        items.append(item)
    if result.partial is not None:
        return _ok(items, "Groups retrieved with partial failures", partial_failure=result.partial.as_dict())
    return _ok(items, "Groups retrieved successfully")


@usercontext_router.get("/groups/activity")
async def get_my_activity_groups(request: Request):
    try:
        groups = _get_service().get_my_activity_groups(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok([to_public(g) for g in groups], "Activity groups retrieved successfully")


@usercontext_router.get("/groups/active")
async def get_my_active_groups(request: Request):
    try:
        groups = _get_service().get_my_active_groups(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok([to_public(g) for g in groups], "Active groups retrieved successfully")


@usercontext_router.get("/groups/supervised")
async def get_my_supervised_groups(request: Request):
    try:
        groups = _get_service().get_my_supervised_groups(_actor_id(request))
    except Exception as exc:
        return error_response(exc)
    return _ok([to_public(g) for g in groups], "Supervised groups retrieved successfully")


@usercontext_router.get("/groups/{group_id}/students")
async def get_group_students(request: Request, group_id: str):
    gid = _parse_group_id(group_id)
    if gid is None:
        return _private_error("bad_request", "invalid group id", status_code=400)
    try:
        students = _get_service().get_group_students(_actor_id(request), gid)
    except Exception as exc:
        return error_response(exc)
    return _ok([to_public(s) for s in students], "Group students retrieved successfully")


@usercontext_router.get("/groups/{group_id}/visits")
async def get_group_visits(request: Request, group_id: str):
    gid = _parse_group_id(group_id)
    if gid is None:
        return _private_error("bad_request", "invalid group id", status_code=400)
    try:
        visits = _get_service().get_group_visits(_actor_id(request), gid)
    except Exception as exc:
        return error_response(exc)
    return _ok([to_public(v) for v in visits], "Group visits retrieved successfully")
