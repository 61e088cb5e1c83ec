"""Library state engine and its SQLAlchemy-backed collaborators."""
