"""CommerceFlow web backend (FastAPI).

Run from the repository root:

    uvicorn web.backend.main:app --reload

or `commerceflow serve`.
"""

__version__ = "0.1.0"
