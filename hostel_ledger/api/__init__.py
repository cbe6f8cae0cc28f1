"""HTTP API: monthly fee endpoints and application factory."""
