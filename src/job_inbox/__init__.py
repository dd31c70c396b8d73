"""Ingest a mailbox and track the job applications it mentions."""

__version__ = "0.1.0"
