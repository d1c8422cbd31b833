"""Run the coaching API with uvicorn.

Run with:  python3 serve.py
"""

from __future__ import annotations

import os

import uvicorn

from coach_core.config import get_settings


def main() -> None:
    settings = get_settings()
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("coach_api.main:app", host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
