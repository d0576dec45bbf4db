"""Application package for the health programs backend.

This package exposes the service, repository and model modules used by
the FastAPI application: user authentication, client records, health
program definitions and client enrollments. Individual modules contain
the concrete implementations and documentation.
"""
