"""
Async client for the Bookshelf API.

This package provides:
- An httpx-based API client with bearer authentication
- Auth context and route guarding
- Listing view state: search, pagination, selection, single and bulk delete
- Edit form helpers
"""
