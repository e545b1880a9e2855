"""
Entrypoint for running the backend server.
HOST and PORT come from the environment, defaulting to 0.0.0.0:8000.
"""
import os

import uvicorn

from app.main import app

if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
