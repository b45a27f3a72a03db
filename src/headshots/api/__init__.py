"""Headshots - FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request models,
request dependencies and the public gallery helpers.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request validation.
dependencies
    Bearer-token extraction and per-request data store construction.
gallery
    Username enrichment for the public gallery.
"""
