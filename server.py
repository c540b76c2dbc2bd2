from __future__ import annotations

import os

import uvicorn

from lipub.app import create_app


def main() -> None:
    host = os.getenv("LIPUB_HOST", "127.0.0.1")
    port = int(os.getenv("LIPUB_PORT", "8000"))
    app = create_app()
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
