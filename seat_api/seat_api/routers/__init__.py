"""API routers for the seat management service."""
