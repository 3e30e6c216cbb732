"""
Backend package for the listings API.

This package provides a FastAPI application with image storage and database
abstractions. Listing images can live in S3-compatible object storage, in a
local uploads directory, or inline in the listing row; the store is chosen
from configuration at startup.
"""
