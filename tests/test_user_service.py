"""UserService tests: the credential store without HTTP in front of it."""

import uuid

import pytest

from conftest import PASSWORD, user_payload
from ekonsulta.db.models import Role
from ekonsulta.errors import NotFoundError, ValidationError
from ekonsulta.schemas.user import UserCreate, UserUpdate
from ekonsulta.services.user_service import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE,
    MAX_PAGE_SIZE,
    UserPage,
    UserQuery,
    UserService,
)


@pytest.fixture()
def svc(db_session):
    return UserService(db_session, bcrypt_rounds=4)


# ═══════════════════════════════════════════════════════════
# Create / lookup
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_hashes_password(svc):
    user = await svc.create(UserCreate(**user_payload("a1")))
    assert user.id is not None
    assert user.role == Role.CLIENT
    assert user.password_hash != PASSWORD
    assert await svc.verify_password(user, PASSWORD)
    assert not await svc.verify_password(user, "wrong-pass")
    assert not await svc.verify_password(user, user.password_hash)


@pytest.mark.asyncio
async def test_create_strips_names(svc):
    user = await svc.create(UserCreate(**user_payload("a1", name="  Ana  ")))
    assert user.name == "Ana"


@pytest.mark.asyncio
async def test_create_duplicate(svc):
    await svc.create(UserCreate(**user_payload("a1")))
    with pytest.raises(ValidationError) as exc:
        await svc.create(UserCreate(**user_payload("a1", email="b@example.com")))
    assert exc.value.message == "Duplicate field value entered"


@pytest.mark.asyncio
async def test_session_usable_after_duplicate(svc):
    await svc.create(UserCreate(**user_payload("a1")))
    with pytest.raises(ValidationError):
        await svc.create(UserCreate(**user_payload("a1")))
    user = await svc.create(UserCreate(**user_payload("a2")))
    assert user.username == "a2"


@pytest.mark.asyncio
async def test_find_by_identifier(svc):
    created = await svc.create(UserCreate(**user_payload("a1")))
    assert (await svc.find_by_identifier(email="a1@example.com")).id == created.id
    assert (await svc.find_by_identifier(username="a1")).id == created.id
    assert await svc.find_by_identifier(email="zz@example.com") is None
    assert await svc.find_by_identifier() is None


@pytest.mark.asyncio
async def test_find_by_identifier_prefers_email(svc):
    a1 = await svc.create(UserCreate(**user_payload("a1")))
    await svc.create(UserCreate(**user_payload("a2")))
    found = await svc.find_by_identifier(email="a1@example.com", username="a2")
    assert found.id == a1.id


@pytest.mark.asyncio
async def test_find_by_id(svc):
    created = await svc.create(UserCreate(**user_payload("a1")))
    assert (await svc.find_by_id(str(created.id))).username == "a1"
    assert await svc.find_by_id(uuid.uuid4()) is None
    assert await svc.find_by_id("not-a-uuid") is None


@pytest.mark.asyncio
async def test_get_missing(svc):
    with pytest.raises(NotFoundError):
        await svc.get(uuid.uuid4())


# ═══════════════════════════════════════════════════════════
# Update / delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_applies_only_sent_fields(svc):
    user = await svc.create(UserCreate(**user_payload("a1", phone="0917")))
    updated = await svc.update(user.id, UserUpdate(address="Davao", phone=None))
    assert updated.address == "Davao"
    assert updated.phone == "0917"
    assert updated.name == "User a1"


@pytest.mark.asyncio
async def test_update_password(svc):
    user = await svc.create(UserCreate(**user_payload("a1")))
    old_hash = user.password_hash
    updated = await svc.update(user.id, UserUpdate(password="another1"))
    assert updated.password_hash != old_hash
    assert await svc.verify_password(updated, "another1")


@pytest.mark.asyncio
async def test_delete(svc):
    user = await svc.create(UserCreate(**user_payload("a1")))
    await svc.delete(user.id)
    assert await svc.find_by_id(user.id) is None
    with pytest.raises(NotFoundError):
        await svc.delete(user.id)


# ═══════════════════════════════════════════════════════════
# Query parsing
# ═══════════════════════════════════════════════════════════


def test_query_defaults():
    q = UserQuery.from_params({})
    assert q.page == 1
    assert q.limit == DEFAULT_PAGE_SIZE
    assert q.sort == [("name", False)]
    assert q.filters == {}
    assert q.fields == []


def test_query_parses_everything():
    q = UserQuery.from_params(
        {"page": "3", "limit": "5", "sort": "-created_at,name", "fields": "email", "role": "client"}
    )
    assert q.page == 3
    assert q.limit == 5
    assert q.offset == 10
    assert q.sort == [("created_at", True), ("name", False)]
    assert q.fields == ["email"]
    assert q.filters == {"role": "client"}


@pytest.mark.parametrize(
    "params,page,limit",
    [
        ({"page": "0"}, 1, DEFAULT_PAGE_SIZE),
        ({"page": "abc", "limit": "xyz"}, 1, DEFAULT_PAGE_SIZE),
        ({"limit": "-4"}, 1, DEFAULT_PAGE_SIZE),
        ({"limit": "5000"}, 1, MAX_PAGE_SIZE),
        ({"page": "99999999999999999999"}, MAX_PAGE, DEFAULT_PAGE_SIZE),
    ],
)
def test_query_clamps_paging(params, page, limit):
    q = UserQuery.from_params(params)
    assert (q.page, q.limit) == (page, limit)


@pytest.mark.parametrize(
    "params",
    [
        {"password_hash": "x"},
        {"id": "x"},
        {"sort": "password_hash"},
        {"fields": "password_hash"},
        {"name": "n" * 101},
    ],
)
def test_query_rejects(params):
    with pytest.raises(ValidationError):
        UserQuery.from_params(params)


def test_page_numbers():
    page = UserPage(items=[], total=21, page=2, limit=10)
    assert page.total_pages == 3
    assert page.has_next
    assert page.has_prev
    last = UserPage(items=[], total=21, page=3, limit=10)
    assert not last.has_next


# ═══════════════════════════════════════════════════════════
# Listing
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_users(svc):
    for name in ("ana", "bea", "cy"):
        await svc.create(UserCreate(**user_payload(name, name=name)))

    page = await svc.list_users(UserQuery.from_params({"sort": "-name", "limit": "2"}))
    assert page.total == 3
    assert [u["name"] for u in page.items] == ["cy", "bea"]
    assert "password_hash" not in page.items[0]


@pytest.mark.asyncio
async def test_list_users_escapes_underscore(svc):
    await svc.create(UserCreate(**user_payload("a_b")))
    await svc.create(UserCreate(**user_payload("axb")))
    page = await svc.list_users(UserQuery.from_params({"username": "a_b"}))
    assert [u["username"] for u in page.items] == ["a_b"]


@pytest.mark.asyncio
async def test_list_users_projection_always_has_id(svc):
    await svc.create(UserCreate(**user_payload("a1")))
    page = await svc.list_users(UserQuery.from_params({"fields": "username"}))
    assert set(page.items[0]) == {"id", "username"}
