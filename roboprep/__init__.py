"""
RoboPrep backend package.

This package provides a FastAPI application for the show-prep prompt
library: session-based authentication, a SQLAlchemy data layer, a proxy
to the language-model API, and the versioned SQLite upgrade tooling used
by administrators.
"""
