"""Application package for the petty-cash expense tracking backend.

This package exposes the service, repository and model modules used by
the FastAPI application in `pettycash.main`. Individual modules contain
the concrete implementations and documentation.
"""
