"""
High-level use cases for the user directory API.

Routers (FastAPI endpoints) call these services instead of manipulating the
repository or the JSON file directly.
"""
