"""Run the HookRelay API with uvicorn.

Usage:
    python -m hookrelay.api
    hookrelay-api --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import argparse

import uvicorn


def main() -> None:
    parser = argparse.ArgumentParser(description="HookRelay webhook API")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    uvicorn.run("hookrelay.api:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
