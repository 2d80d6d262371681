"""User service: the credential store.

Learn: Service layer separates business logic from HTTP routing.
Routes call services, services call the database. Every mutation is a
single-row operation committed on its own; uniqueness of username and
email is left to the database's unique indexes, so two concurrent
registrations for the same name cannot both succeed.

Passwords are hashed and checked in Starlette's threadpool: bcrypt is
deliberately slow and would otherwise stall the event loop.
"""

import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy import String, cast, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from ekonsulta.auth.password import DEFAULT_ROUNDS, hash_password, verify_password
from ekonsulta.db.models import User
from ekonsulta.errors import DUPLICATE_MESSAGE, NotFoundError, ValidationError
from ekonsulta.schemas.user import UserCreate, UserRead, UserUpdate

logger = structlog.get_logger()

# Columns exposed to the list endpoint. password_hash is never among them.
FILTERABLE_FIELDS = ("name", "username", "email", "role", "phone", "address")
SORTABLE_FIELDS = FILTERABLE_FIELDS + ("created_at",)
SELECTABLE_FIELDS = ("id",) + SORTABLE_FIELDS
RESERVED_PARAMS = ("page", "limit", "sort", "fields")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MAX_PAGE = 1_000_000
MAX_FILTER_LENGTH = 100


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _split(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class UserQuery:
    """Parsed list parameters: filters, sort order, projection and page."""

    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    filters: dict[str, str] = field(default_factory=dict)
    sort: list[tuple[str, bool]] = field(default_factory=lambda: [("name", False)])
    fields: list[str] = field(default_factory=list)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> "UserQuery":
        """Build a query from raw query-string values.

        Every parameter other than page/limit/sort/fields is a filter: a
        literal, case-insensitive substring match on that field.
        """
        page = min(max(1, _parse_int(params.get("page"), 1)), MAX_PAGE)
        limit = _parse_int(params.get("limit"), DEFAULT_PAGE_SIZE)
        if limit < 1:
            limit = DEFAULT_PAGE_SIZE
        limit = min(limit, MAX_PAGE_SIZE)

        filters = {}
        for name, value in params.items():
            if name in RESERVED_PARAMS:
                continue
            if name not in FILTERABLE_FIELDS:
                raise ValidationError(f"Cannot filter users by '{name}'")
            if len(value) > MAX_FILTER_LENGTH:
                raise ValidationError(
                    f"Filter '{name}' cannot be longer than {MAX_FILTER_LENGTH} characters"
                )
            filters[name] = value

        sort = []
        for item in _split(params.get("sort")):
            descending = item.startswith("-")
            name = item[1:] if descending else item
            if name not in SORTABLE_FIELDS:
                raise ValidationError(f"Cannot sort users by '{name}'")
            sort.append((name, descending))

        fields = _split(params.get("fields"))
        unknown = [f for f in fields if f not in SELECTABLE_FIELDS]
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

        return cls(
            page=page,
            limit=limit,
            filters=filters,
            sort=sort or [("name", False)],
            fields=fields,
        )


@dataclass
class UserPage:
    """One page of list results plus the numbers the response needs."""

    items: list[dict[str, Any]]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)

    @property
    def has_next(self) -> bool:
        return self.page * self.limit < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


class UserService:
    """Business logic for identities and their credentials."""

    def __init__(self, db: AsyncSession, bcrypt_rounds: int = DEFAULT_ROUNDS):
        self.db = db
        self.bcrypt_rounds = bcrypt_rounds

    # ─── Lookup ─────────────────────────────────────────

    async def find_by_id(self, user_id: Any) -> Optional[User]:
        """Return the user, or None when missing or the id is malformed."""
        try:
            key = user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
        except ValueError:
            return None
        return await self.db.get(User, key)

    async def get(self, user_id: Any) -> User:
        user = await self.find_by_id(user_id)
        if not user:
            raise NotFoundError(f"User not found with id of {user_id}")
        return user

    async def find_by_identifier(
        self, email: Optional[str] = None, username: Optional[str] = None
    ) -> Optional[User]:
        """Find a user by email, or by username when no email is given."""
        if email:
            q = select(User).where(User.email == email)
        elif username:
            q = select(User).where(User.username == username)
        else:
            return None
        result = await self.db.execute(q)
        return result.scalars().first()

    async def verify_password(self, user: User, candidate: str) -> bool:
        return await run_in_threadpool(verify_password, candidate, user.password_hash)

    # ─── Mutations ──────────────────────────────────────

    async def create(self, data: UserCreate) -> User:
        """Create an identity; the plaintext password is hashed and dropped."""
        user = User(
            name=data.name,
            username=data.username,
            email=data.email,
            role=data.role,
            phone=data.phone,
            address=data.address,
            password_hash=await self._hash(data.password),
        )
        self.db.add(user)
        await self._commit()
        logger.info("user.created", user_id=str(user.id), role=user.role.value)
        return user

    async def update(self, user_id: Any, data: UserUpdate) -> User:
        """Apply a partial update; a new password is re-hashed."""
        user = await self.get(user_id)
        changes = data.changes()
        password = changes.pop("password", None)
        for name, value in changes.items():
            setattr(user, name, value)
        if password is not None:
            user.password_hash = await self._hash(password)
        await self._commit()
        logger.info(
            "user.updated",
            user_id=str(user.id),
            fields=sorted(changes) + (["password"] if password is not None else []),
        )
        return user

    async def delete(self, user_id: Any) -> None:
        user = await self.get(user_id)
        await self.db.delete(user)
        await self.db.commit()
        logger.info("user.deleted", user_id=str(user_id))

    # ─── Listing ────────────────────────────────────────

    async def list_users(self, query: UserQuery) -> UserPage:
        """Filter, sort, project and paginate users."""
        conditions = [
            cast(getattr(User, name), String).ilike(
                f"%{_escape_like(value)}%", escape="\\"
            )
            for name, value in query.filters.items()
        ]

        count_q = select(func.count()).select_from(User).where(*conditions)
        total = (await self.db.execute(count_q)).scalar_one()

        order_by = [
            getattr(User, name).desc() if descending else getattr(User, name).asc()
            for name, descending in query.sort
        ]
        # id breaks ties so equal sort keys page deterministically
        order_by.append(User.id.asc())

        if query.fields:
            columns = ["id"] + [f for f in query.fields if f != "id"]
            q = select(*(getattr(User, c) for c in columns))
        else:
            q = select(User)
        q = q.where(*conditions).order_by(*order_by).offset(query.offset).limit(query.limit)

        result = await self.db.execute(q)
        if query.fields:
            items = [dict(row._mapping) for row in result.all()]
        else:
            items = [
                UserRead.model_validate(user).model_dump()
                for user in result.scalars().all()
            ]

        return UserPage(items=items, total=total, page=query.page, limit=query.limit)

    # ─── Internals ──────────────────────────────────────

    async def _hash(self, password: str) -> str:
        return await run_in_threadpool(hash_password, password, self.bcrypt_rounds)

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError(DUPLICATE_MESSAGE)
