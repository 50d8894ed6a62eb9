"""Data models for taskchat."""
