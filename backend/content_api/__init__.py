"""Application package for the multi-tenant content API.

This package exposes the service, repository and model modules used by
the FastAPI application in `main.py`. Users own projects, tasks and
answers; access is decided from the credentials carried in the bearer
token plus an ownership check on the stored record.
"""
