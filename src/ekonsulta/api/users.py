"""User administration API: CRUD over identities.

Learn: Every route here is administrator-only. The role check is not
repeated per handler: api/__init__.py mounts this router with
require_roles(Role.ADMINISTRATOR) as a router-level dependency.

GET /users takes its filters straight from the query string: page,
limit, sort and fields are reserved, every other parameter is a
case-insensitive substring filter on the field of that name.

    GET /users?role=client&sort=-created_at&fields=name,email&page=2
"""

from fastapi import APIRouter, Depends, Request

from ekonsulta.auth.dependencies import get_user_service
from ekonsulta.schemas.user import (
    EmptyEnvelope,
    PageLink,
    UserCreate,
    UserEnvelope,
    UserListResponse,
    UserRead,
    UserUpdate,
)
from ekonsulta.services.user_service import UserQuery, UserService

router = APIRouter(prefix="/users")


@router.get("", response_model=UserListResponse)
async def list_users(
    request: Request,
    users: UserService = Depends(get_user_service),
):
    """Filter, sort, project and paginate users."""
    # dict() keeps the last value of a repeated parameter
    query = UserQuery.from_params(dict(request.query_params))
    page = await users.list_users(query)

    pagination = {}
    if page.has_next:
        pagination["next"] = PageLink(page=page.page + 1, limit=page.limit)
    if page.has_prev:
        pagination["prev"] = PageLink(page=page.page - 1, limit=page.limit)

    return UserListResponse(
        count=len(page.items),
        pagination=pagination,
        total_pages=page.total_pages,
        current_page=page.page,
        data=page.items,
    )


@router.get("/{user_id}", response_model=UserEnvelope)
async def get_user(user_id: str, users: UserService = Depends(get_user_service)):
    user = await users.get(user_id)
    return UserEnvelope(data=UserRead.model_validate(user))


@router.post("", response_model=UserEnvelope, status_code=201)
async def create_user(body: UserCreate, users: UserService = Depends(get_user_service)):
    """Create an identity with any role."""
    user = await users.create(body)
    return UserEnvelope(data=UserRead.model_validate(user))


@router.put("/{user_id}", response_model=UserEnvelope)
async def update_user(
    user_id: str,
    body: UserUpdate,
    users: UserService = Depends(get_user_service),
):
    """Partial update: omitted or null fields are left unchanged."""
    user = await users.update(user_id, body)
    return UserEnvelope(data=UserRead.model_validate(user))


@router.delete("/{user_id}", response_model=EmptyEnvelope)
async def delete_user(user_id: str, users: UserService = Depends(get_user_service)):
    await users.delete(user_id)
    return EmptyEnvelope()
