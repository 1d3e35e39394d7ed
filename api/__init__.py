"""
FastAPI REST API for the Book Catalog.

This module provides a REST API for:
- Book catalog browsing with filtering, sorting and pagination
- User accounts with JWT cookie sessions
- Role-based access control for catalog administration
"""
