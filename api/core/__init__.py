"""
Core utilities shared across the user directory API.

This package hosts configuration helpers (env vars, data file location) and
cross-cutting concerns such as logging setup. Routers and services depend on
these primitives instead of reading the environment themselves.
"""
