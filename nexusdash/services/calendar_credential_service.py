from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.models import GoogleCalendarCredential, User, get_utc_now
from nexusdash.services.google_calendar import GoogleTokenResponse, create_expiry_date


class CalendarCredentialService:
    @staticmethod
    async def find_credential(user_id: str, db: AsyncSession) -> GoogleCalendarCredential | None:
        result = await db.exec(
            select(GoogleCalendarCredential).where(GoogleCalendarCredential.user_id == user_id)
        )
        return result.first()

    @staticmethod
    async def update_credential_tokens(
        credential: GoogleCalendarCredential,
        tokens: GoogleTokenResponse,
        db: AsyncSession,
    ) -> GoogleCalendarCredential:
        """Store refreshed tokens, keeping fields Google did not send back."""
        credential.access_token = tokens.access_token
        credential.refresh_token = tokens.refresh_token or credential.refresh_token
        credential.token_type = tokens.token_type or credential.token_type
        credential.scope = tokens.scope or credential.scope
        credential.expires_at = create_expiry_date(tokens.expires_in)
        credential.updated_at = get_utc_now()
        await db.commit()
        await db.refresh(credential)
        return credential

    @staticmethod
    async def upsert_credential_tokens(
        user_id: str, tokens: GoogleTokenResponse, db: AsyncSession
    ) -> GoogleCalendarCredential:
        credential = await CalendarCredentialService.find_credential(user_id, db)

        refresh_token = tokens.refresh_token or (credential.refresh_token if credential else None)
        if not refresh_token:
            raise ValueError("missing-refresh-token")

        if await db.get(User, user_id) is None:
            db.add(User(id=user_id))

        if credential is None:
            credential = GoogleCalendarCredential(user_id=user_id, refresh_token=refresh_token)
            db.add(credential)

        credential.access_token = tokens.access_token
        credential.refresh_token = refresh_token
        credential.token_type = tokens.token_type
        credential.scope = tokens.scope
        credential.expires_at = create_expiry_date(tokens.expires_in)
        credential.updated_at = get_utc_now()

        await db.commit()
        await db.refresh(credential)
        return credential
