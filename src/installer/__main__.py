"""Run the installer service.

Usage:
    python -m installer --host 0.0.0.0 --port 8000
"""
from __future__ import annotations

import argparse

import uvicorn

from installer.app.main import create_app
from installer.app.settings import InstallerSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="installer")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    app = create_app(InstallerSettings.from_env())
    # Single worker: runs live in this process's event loop.
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
