"""
FastAPI REST API for the Bookshelf personal book catalog.

This module provides:
- Per-user book CRUD and search
- Paginated, sortable collection listing
- Registration, login and password reset with bearer tokens
"""
