"""Todo API: users and their todos over HTTP."""

__version__ = "1.0.0"
