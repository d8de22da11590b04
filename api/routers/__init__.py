"""
FastAPI routers grouped by domain (users, health).

Each module exposes an APIRouter that app.py includes under the API prefix.
"""
