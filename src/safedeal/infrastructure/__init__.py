"""Infrastructure adapters: database and Redis."""
