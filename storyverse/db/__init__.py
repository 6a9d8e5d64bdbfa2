"""SQLite persistence for jobs and universes."""
