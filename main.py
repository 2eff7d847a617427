"""
Trip Reservation & Payment Backend.

    uvicorn main:app --reload

Set ``SWEEPER_ENABLED=false`` when an external scheduler drives the
``/api/v1/admin/sweeps/*`` endpoints instead.
"""

import uvicorn

from src.api.app import create_app

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
