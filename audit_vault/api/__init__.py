"""FastAPI surface for the backup engine."""
