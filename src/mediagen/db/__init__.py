"""Database models and initialization."""
