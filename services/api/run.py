#!/usr/bin/env python3
"""
Development server runner for the Snap Judge API.

Usage:
    python run.py

Or with uvicorn directly:
    uvicorn snapjudge.main:combined_app --reload --host 0.0.0.0 --port 8000
"""
import os

from dotenv import load_dotenv


def main():
    import uvicorn

    load_dotenv()

    port = int(os.environ.get("PORT", 8000))
    host = os.environ.get("HOST", "0.0.0.0")
    reload = os.environ.get("DEBUG", "false").lower() == "true"

    print(f"Starting server on http://{host}:{port}")
    print(f"  API docs: http://localhost:{port}/docs")
    print(f"  Health check: http://localhost:{port}/api/health")
    print()

    uvicorn.run(
        "snapjudge.main:combined_app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
