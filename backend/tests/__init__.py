"""
Pytest suite for the fulfillment backend.

Test categories:
- Unit tests: services against a per-test SQLite file and memory mail transport
- Integration tests: ORM models directly against the database
- API tests: the FastAPI app through httpx's ASGI transport
"""
