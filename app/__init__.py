"""Episodely FastAPI application package."""
