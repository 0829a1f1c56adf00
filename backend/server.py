from __future__ import annotations

from subgate.config import settings
from subgate.main import app

__all__ = ["app"]

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=settings.port, reload=not settings.is_production)
