"""Serve the API with uvicorn: ``python -m kitchen_logistics``."""

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "kitchen_logistics.main:app",
        host=os.getenv("KITCHEN_API_HOST", "0.0.0.0"),
        port=int(os.getenv("KITCHEN_API_PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
