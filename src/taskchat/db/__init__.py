"""Database access for taskchat."""
