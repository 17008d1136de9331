"""
main.py

Entry point for the MOC Studio Management of Change API.

Configures logging and starts uvicorn.  Storage, token secrets and the
geocoder are configured through MOC_* environment variables (see settings.py).

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

    # Option 3 — persist to a JSON file instead of memory
    MOC_STORAGE_PATH=./moc-data.json uvicorn main:app --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  POST  /api/v1/session/login       — {"email": "admin@mocstudio.io"}
                                        copy "access_token" from the response
2.  GET   /api/v1/mocs                — Authorization: Bearer <access_token>
3.  PUT   /api/v1/mocs/MOC-2024-001   — set "status": "Approved"
4.  GET   /api/v1/work-orders/by-moc/MOC-2024-001
                                      — the generated IMPLEMENTATION work order
5.  GET   /api/v1/audit               — the write, with its field-level diff
"""

import uvicorn

from api import app  # noqa: F401  (re-exported for "uvicorn main:app")
from settings import configure_logging, get_settings

settings = get_settings()
configure_logging(settings.log_level)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,          # auto-reload on file changes during development
        log_level=settings.log_level.lower(),
    )
