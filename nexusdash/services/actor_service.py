from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.core.config import get_settings
from nexusdash.models import User

ACTOR_HEADER = "x-nexus-user-id"

BOOTSTRAP_USER_ID = "bootstrap-owner"
BOOTSTRAP_USER_NAME = "Bootstrap Owner"
BOOTSTRAP_USER_EMAIL = "bootstrap@nexusdash.local"


def normalize_user_id(value: str | None) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


class ActorService:
    @staticmethod
    async def ensure_user(user_id: str, db: AsyncSession) -> User:
        user = await db.get(User, user_id)

        if user_id == BOOTSTRAP_USER_ID:
            if user is None:
                user = User(id=BOOTSTRAP_USER_ID)
                db.add(user)
            user.name = BOOTSTRAP_USER_NAME
            user.email = BOOTSTRAP_USER_EMAIL
            await db.commit()
            return user

        if user is not None:
            return user

        user = User(id=user_id, name=f"Legacy Actor ({user_id[:12]})")
        db.add(user)
        await db.commit()
        return user

    @staticmethod
    async def resolve_actor_user_id(
        db: AsyncSession, preferred_user_id: str | None = None
    ) -> str:
        """
        Decide which user a request acts as.

        Outside production the actor header (or LEGACY_ACTOR_USER_ID) selects
        the user; production always acts as the bootstrap owner.
        """
        settings = get_settings()
        preferred = normalize_user_id(preferred_user_id)
        configured = normalize_user_id(settings.legacy_actor_user_id)
        environment = settings.runtime_environment

        if environment == "test":
            return preferred or configured or BOOTSTRAP_USER_ID

        if environment != "production":
            candidate = preferred or configured
            if candidate:
                await ActorService.ensure_user(candidate, db)
                return candidate

        await ActorService.ensure_user(BOOTSTRAP_USER_ID, db)
        return BOOTSTRAP_USER_ID
