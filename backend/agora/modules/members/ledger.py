"""
Profile Ledger - member identity, role and ban state, counters.
"""

import re
from datetime import datetime

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from agora.core.database import Store
from agora.core.errors import Conflict, NotFound, Unauthorized, ValidationError
from agora.models.user import BanState, Profile, ProfileRole

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,32}$")

# Target state -> state it may be reached from
ROLE_TRANSITIONS: dict[ProfileRole, ProfileRole] = {
    ProfileRole.MODERATOR: ProfileRole.MEMBER,
    ProfileRole.MEMBER: ProfileRole.MODERATOR,
}
BAN_TRANSITIONS: dict[BanState, BanState] = {
    BanState.BANNED: BanState.ACTIVE,
    BanState.ACTIVE: BanState.BANNED,
}

EDITABLE_FIELDS = ("display_name", "bio", "location", "website", "avatar_url")


# ==================== In-transaction helpers ====================


async def load_profile(
    session: AsyncSession,
    user_id: int,
    lock: bool = False,
    for_update: bool = False,
) -> Profile | None:
    """
    Load a profile inside the caller's transaction.

    With ``lock`` the row is read FOR SHARE, so a concurrent role or ban
    change waits until the caller's decision has committed. Rows the caller
    will write take ``for_update`` instead: a shared lock cannot be upgraded
    while another transaction shares it.
    """
    query = select(Profile).where(Profile.id == user_id)
    if for_update:
        query = query.with_for_update(key_share=True)
    elif lock:
        query = query.with_for_update(read=True)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def lock_profiles(session: AsyncSession, *user_ids: int) -> None:
    """Lock the profile rows a transaction will write, lowest ID first."""
    await session.execute(
        select(Profile.id)
        .where(Profile.id.in_(sorted(set(user_ids))))
        .order_by(Profile.id)
        .with_for_update(key_share=True)
    )


async def require_member(
    session: AsyncSession,
    user_id: int,
    for_update: bool = False,
) -> Profile:
    """Profile of a known caller, locked for the transaction."""
    profile = await load_profile(session, user_id, lock=True, for_update=for_update)
    if profile is None:
        raise Unauthorized(f"Unknown member {user_id}")
    return profile


async def require_author(
    session: AsyncSession,
    user_id: int,
    for_update: bool = False,
) -> Profile:
    """Profile of a caller allowed to author threads, posts and likes."""
    profile = await require_member(session, user_id, for_update=for_update)
    if profile.ban_state == BanState.BANNED:
        raise Unauthorized(f"Member {user_id} is banned")
    return profile


async def require_moderator(session: AsyncSession, user_id: int) -> Profile:
    """Profile of a caller allowed to run moderation actions."""
    profile = await require_member(session, user_id)
    if profile.role != ProfileRole.MODERATOR or profile.ban_state == BanState.BANNED:
        raise Unauthorized(f"Member {user_id} is not a moderator")
    return profile


async def adjust_counters(
    session: AsyncSession,
    user_id: int,
    posts: int = 0,
    reputation: int = 0,
) -> None:
    """Atomically shift a profile's post count and reputation."""
    if not posts and not reputation:
        return
    await session.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(
            post_count=Profile.post_count + posts,
            reputation=Profile.reputation + reputation,
        )
    )


async def _transition(
    session: AsyncSession,
    user_id: int,
    column: InstrumentedAttribute,
    target: ProfileRole | BanState,
    source: ProfileRole | BanState,
) -> bool:
    # The WHERE on the current state makes validate-and-write one statement
    result = await session.execute(
        update(Profile)
        .where(Profile.id == user_id, column == source)
        .values({column.key: target, "updated_at": datetime.utcnow()})
    )
    if result.rowcount:
        return True
    if await load_profile(session, user_id) is None:
        raise NotFound(f"Profile {user_id} not found")
    return False


async def set_role(session: AsyncSession, user_id: int, target: ProfileRole) -> bool:
    """
    Move a profile to ``target`` role.

    Returns:
        True if the role changed, False if it already was ``target``
    """
    return await _transition(
        session, user_id, Profile.role, target, ROLE_TRANSITIONS[target]
    )


async def set_ban_state(session: AsyncSession, user_id: int, target: BanState) -> bool:
    """Move a profile to ``target`` ban state. Same contract as ``set_role``."""
    return await _transition(
        session, user_id, Profile.ban_state, target, BAN_TRANSITIONS[target]
    )


# ==================== Service ====================


class ProfileLedger:
    """
    Service for member profiles.

    Role and ban changes go through ``ModerationController``; post count and
    reputation are shifted by the forum services inside their own
    transactions.

    Usage:
        members = ProfileLedger(store)
        profile = await members.register(username="ada", display_name="Ada")
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def register(
        self,
        username: str,
        display_name: str | None = None,
        user_id: int | None = None,
    ) -> Profile:
        """
        Create the profile for an identity.

        Args:
            username: Unique handle
            display_name: Shown name (defaults to username)
            user_id: Identity provider ID to reuse as profile ID

        Returns:
            Created profile
        """
        username = username.strip()
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "Username must be 3-32 characters of letters, digits, '.', '_' or '-'"
            )
        display_name = (display_name or "").strip() or username

        async def work(session: AsyncSession) -> Profile:
            existing = await session.execute(
                select(Profile.id).where(Profile.username == username)
            )
            if existing.scalar_one_or_none() is not None:
                raise Conflict(f"Username {username} is taken")
            if user_id is not None and await session.get(Profile, user_id):
                raise Conflict(f"Profile {user_id} already exists")

            profile = Profile(
                username=username,
                display_name=display_name,
                role=ProfileRole.MEMBER,
                ban_state=BanState.ACTIVE,
                post_count=0,
                reputation=0,
            )
            if user_id is not None:
                profile.id = user_id
            session.add(profile)
            try:
                await session.flush()
            except IntegrityError as e:
                raise Conflict(f"Username {username} is taken") from e
            return profile

        profile = await self.store.run(work, label="register_profile")
        logger.info(f"Registered profile {profile.id} ({profile.username})")
        return profile

    async def bootstrap_moderator(self, user_id: int) -> Profile:
        """
        Make ``user_id`` the first moderator of a fresh forum.

        Fails with Conflict once any moderator exists; from then on roles
        change only through ``ModerationController``.
        """

        async def work(session: AsyncSession) -> Profile:
            existing = await session.execute(
                select(Profile.id).where(Profile.role == ProfileRole.MODERATOR).limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                raise Conflict("Forum already has a moderator")
            await set_role(session, user_id, ProfileRole.MODERATOR)
            return await load_profile(session, user_id)

        profile = await self.store.run(work, label="bootstrap_moderator")
        logger.info(f"Profile {user_id} bootstrapped as first moderator")
        return profile

    async def get_profile(self, user_id: int) -> Profile:
        """Get profile by ID."""

        async def work(session: AsyncSession) -> Profile:
            profile = await load_profile(session, user_id)
            if profile is None:
                raise NotFound(f"Profile {user_id} not found")
            return profile

        return await self.store.run(work, label="get_profile")

    async def get_by_username(self, username: str) -> Profile:
        """Get profile by username."""

        async def work(session: AsyncSession) -> Profile:
            result = await session.execute(
                select(Profile).where(Profile.username == username)
            )
            profile = result.scalar_one_or_none()
            if profile is None:
                raise NotFound(f"Profile {username} not found")
            return profile

        return await self.store.run(work, label="get_profile_by_username")

    async def update_profile(self, user_id: int, **changes: str | None) -> Profile:
        """Update the editable profile fields of the caller."""
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}")
        if "display_name" in changes and not (changes["display_name"] or "").strip():
            raise ValidationError("Display name cannot be empty")

        async def work(session: AsyncSession) -> Profile:
            profile = await load_profile(session, user_id, for_update=True)
            if profile is None:
                raise NotFound(f"Profile {user_id} not found")
            for field, value in changes.items():
                setattr(profile, field, value.strip() if isinstance(value, str) else value)
            await session.flush()
            return profile

        return await self.store.run(work, label="update_profile")

    async def list_members(
        self,
        limit: int = 50,
        offset: int = 0,
        include_banned: bool = False,
    ) -> list[Profile]:
        """
        List members.

        Public listings hide banned members and rank by reputation; the
        moderation listing includes everyone, newest first.
        """

        async def work(session: AsyncSession) -> list[Profile]:
            return await self.list_members_in(session, limit, offset, include_banned)

        return await self.store.run(work, label="list_members")

    async def list_members_in(
        self,
        session: AsyncSession,
        limit: int,
        offset: int,
        include_banned: bool,
    ) -> list[Profile]:
        query = select(Profile)
        if include_banned:
            query = query.order_by(Profile.joined_at.desc(), Profile.id.desc())
        else:
            query = query.where(Profile.ban_state == BanState.ACTIVE).order_by(
                Profile.reputation.desc(), Profile.id
            )
        result = await session.execute(query.limit(limit).offset(offset))
        return list(result.scalars().all())

    async def search_members_in(
        self,
        session: AsyncSession,
        term: str,
        limit: int,
    ) -> list[Profile]:
        """Active members whose username or display name contains ``term``."""
        result = await session.execute(
            select(Profile)
            .where(
                Profile.ban_state == BanState.ACTIVE,
                Profile.username.icontains(term, autoescape=True)
                | Profile.display_name.icontains(term, autoescape=True),
            )
            .order_by(Profile.reputation.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
