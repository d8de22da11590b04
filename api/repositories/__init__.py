"""
Persistence adapters.

``json_storage`` knows how the users array is laid out on disk;
``user_repository`` owns the in-memory cache and serializes writes to it.
Services depend on the repository rather than touching the JSON file.
"""
