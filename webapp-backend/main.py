#!/usr/bin/env python3
"""Application entrypoint for running the FastAPI app with Uvicorn."""

from dotenv import load_dotenv

load_dotenv()

from app.main import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
