"""Serve the chat API locally."""

import os

import uvicorn

from .api.app import create_app


def main() -> None:
    host = os.getenv("AI_CHAT_HOST", "127.0.0.1")
    port = int(os.getenv("AI_CHAT_PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
