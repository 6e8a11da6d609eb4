"""
Cookie counter backend.

A small FastAPI service that keeps a running tally of contributed cookies,
broken down by cookie type and submitting location, with optional geocoding
and photo uploads.
"""
