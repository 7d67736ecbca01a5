"""Backend package for the Thrive in Japan learning platform.

The package exposes the FastAPI application (`thrive.main`), the SQLModel
tables, repositories and the service layer. Individual modules contain
the concrete implementations and documentation.
"""
