"""
services/user_service.py
------------------------
User registration.

The secure-channel unwrapping of the registration payload happens before
this layer; register_user receives the decoded profile. Registration is an
upsert keyed by phone: a reinstall re-registers the same user and refreshes
the push token and profile fields that were supplied.
"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.logging import get_logger, preview
from bubblechat.models.user import User
from bubblechat.schemas.register import RegisterRequest

logger = get_logger(__name__)


class UserService:

    @staticmethod
    async def register_user(db: AsyncSession, data: RegisterRequest) -> User:
        """
        Create or update the user identified by data.phone.
        Only fields present in the request overwrite stored values.
        """
        user = await db.get(User, data.phone)
        created = user is None
        if created:
            user = User(phone=data.phone)
            db.add(user)

        if data.fcm_token:
            user.push_token = data.fcm_token
        if data.gender is not None:
            user.gender = data.gender
        if data.age is not None:
            user.age = data.age
        if data.city is not None:
            user.location = data.city

        try:
            await db.flush()
        except IntegrityError:
            # Lost a concurrent first registration for the same phone
            await db.rollback()
            user = await db.get(User, data.phone)
            if user is None:
                raise
            if data.fcm_token:
                user.push_token = data.fcm_token
                await db.flush()
            created = False

        logger.info(
            "User registered" if created else "User re-registered",
            phone=user.phone,
            push_token=preview(user.push_token),
        )
        return user
