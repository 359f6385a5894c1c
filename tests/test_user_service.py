"""Tests for user registration."""

import pytest

from shopnexus.db import Role, User
from shopnexus.exceptions import ConflictError, ValidationError
from shopnexus.models import RegisterRequest
from shopnexus.user_service import UserService


@pytest.fixture
def users(session_factory):
    return UserService(session_factory)


class TestRegister:
    def test_creates_shopper(self, users, count_rows):
        user = users.register(RegisterRequest(name=" Ada ", email="Ada@Example.com"))

        assert user.name == "Ada"
        assert user.email == "ada@example.com"
        assert user.role == Role.USER
        assert count_rows(User) == 1

    def test_duplicate_email_conflicts(self, users):
        users.register(RegisterRequest(name="Ada", email="ada@example.com"))

        with pytest.raises(ConflictError) as exc_info:
            users.register(RegisterRequest(name="Other Ada", email="ADA@example.com"))

        assert exc_info.value.message == "Email already registered"

    def test_existing_seeded_email_conflicts(self, users, user_id):
        with pytest.raises(ConflictError):
            users.register(RegisterRequest(name="Again", email="user@shopnexus.com"))

    def test_blank_name_rejected(self, users):
        with pytest.raises(ValidationError):
            users.register(RegisterRequest(name="   ", email="blank@example.com"))
