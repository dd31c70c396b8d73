"""Web application entry point for Job Inbox."""

from .app import create_app

__all__ = ["create_app"]
