"""Remote-store read endpoints."""
