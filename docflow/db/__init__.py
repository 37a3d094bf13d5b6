"""docflow persistence — SQLAlchemy tables, sessions and store implementations."""
