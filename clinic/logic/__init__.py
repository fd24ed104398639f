"""Business logic: reconciliation, retrying calls, autosave and data access."""
