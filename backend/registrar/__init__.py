"""Application package for the course registrar backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Seat admission, the waitlist queue and the
promotion trigger live in `registrar.utils`; individual modules contain
the concrete implementations and documentation.
"""
