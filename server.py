"""AutoGenSocial orchestrator server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    reload = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting AutoGenSocial orchestrator on {host}:{port}")
    uvicorn.run("autogensocial.main:app", host=host, port=port, reload=reload)
