"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from api.config import APIConfig
from api.database import BookStore, UserStore
from api.mailer import EmailSender
from api.main import create_app


@pytest.fixture
def settings():
    """Production-mode settings with a cheap bcrypt work factor."""
    return APIConfig(
        node_env="production",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        _env_file=None,
    )


@pytest.fixture
def dev_settings():
    """Development-mode settings."""
    return APIConfig(
        node_env="development",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        _env_file=None,
    )


@pytest.fixture
def mock_db_service():
    """Create a mock database service with async store doubles."""
    service = MagicMock()
    service.books = AsyncMock(spec=BookStore)
    service.users = AsyncMock(spec=UserStore)
    service.health_check = AsyncMock(return_value={"status": "healthy"})
    return service


@pytest.fixture
def mock_email_sender():
    """Create a mock email sender."""
    return AsyncMock(spec=EmailSender)


@pytest.fixture
def app(settings, mock_db_service, mock_email_sender):
    return create_app(settings, db_service=mock_db_service, email_sender=mock_email_sender)


@pytest.fixture
def client(app):
    """Create test client; server errors are returned as responses."""
    return TestClient(app, raise_server_exceptions=False)


def make_user(role="user", **overrides):
    """Build a stored user document."""
    doc = {
        "_id": ObjectId(),
        "name": "Alice",
        "email": "alice@example.com",
        "role": role,
        "photo": None,
        "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def sample_user():
    return make_user()


@pytest.fixture
def admin_user():
    return make_user(role="admin", name="Admin", email="admin@example.com")


@pytest.fixture
def login_as(app, client, mock_db_service):
    """Return a helper that sets a valid session cookie for a user document."""

    def _login(user):
        mock_db_service.users.get.return_value = user
        token = app.state.token_codec.sign(str(user["_id"]))
        client.cookies.set("jwt", token)
        return token

    return _login


@pytest.fixture
def sample_book_data():
    """Create sample book data for testing."""
    return {
        "name": "A Light in the Attic",
        "author": "Shel Silverstein",
        "genre": "Poetry",
        "price": 51.77,
        "pageCount": 176,
        "summary": "Poems and drawings",
        "language": "English",
        "publisher": {"name": "Harper & Row", "publishedDate": "1981-10-07T00:00:00"},
    }


@pytest.fixture
def sample_book(sample_book_data):
    """A stored book document."""
    return {
        "_id": ObjectId(),
        **sample_book_data,
        "priceDiscount": None,
        "available": True,
        "bestSeller": False,
        "ratingAverage": 4.5,
        "ratingQuantity": 0,
        "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "updatedAt": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def mock_collection():
    """A motor collection double whose find() cursor chains synchronously."""
    collection = MagicMock()
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=[])
    collection.find.return_value = cursor
    collection.find_one = AsyncMock(return_value=None)
    collection.find_one_and_update = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    collection.create_index = AsyncMock()
    return collection


@pytest.fixture
def user_factory():
    return make_user
