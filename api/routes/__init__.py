"""API routers for the book catalog."""

from api.routes import auth, books, users

__all__ = ["auth", "books", "users"]
