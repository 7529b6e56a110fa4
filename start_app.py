#!/usr/bin/env python
"""Start the offer tracker FastAPI application."""
import os
import uvicorn

if __name__ == "__main__":
    # Get port from environment, default to 8000
    port = int(os.environ.get("PORT", 8000))

    print(f"Starting application on port {port}")

    uvicorn.run(
        "offer_tracker.main:app",
        host="0.0.0.0",
        port=port,
        log_level="info"
    )
