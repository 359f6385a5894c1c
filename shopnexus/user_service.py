"""
User registration.

Credentials stay with the upstream authentication provider; this service
creates the local user row the access gate resolves X-User-ID against.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from shopnexus.db import Role, User, transaction
from shopnexus.exceptions import ConflictError, ValidationError
from shopnexus.models import RegisterRequest, UserOut

logger = logging.getLogger(__name__)


class UserService:
    """Service for user accounts"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def register(self, data: RegisterRequest) -> UserOut:
        """
        Create a shopper account.

        Emails are compared case-insensitively. Self-registered users always
        get the user role.

        Raises:
            ConflictError: the email is already registered
        """
        name = data.name.strip()
        if not name:
            raise ValidationError("Name is required")
        email = data.email.strip().lower()
        with transaction(self.session_factory) as session:
            if session.scalar(select(User.id).where(User.email == email)) is not None:
                raise ConflictError("Email already registered")

            user = User(name=name, email=email, role=Role.USER)
            session.add(user)
            try:
                session.flush()
            except IntegrityError:
                # Lost a race with a concurrent registration
                raise ConflictError("Email already registered")

            logger.info(f"User registered: {user.id}", extra={"user_id": user.id})
            return UserOut.model_validate(user)
