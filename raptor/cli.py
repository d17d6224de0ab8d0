"""Small CLI helpers wired to project scripts for developer convenience.

Usage (from project root):
  runserver --host=0.0.0.0 --port=8000 --no-reload
  run-tests
  migrate                   # defaults to `alembic upgrade head`
  init-env                  # copies .env.example -> .env if missing
  cleanup-tokens            # purge expired refresh tokens and blacklist rows
"""
from __future__ import annotations

import sys
import shutil
import subprocess
from pathlib import Path
from typing import List


def _args() -> List[str]:
    return sys.argv[1:]


def runserver() -> None:
    """Run Uvicorn programmatically. Accepts simple flags:

    --host=<host>  (default 127.0.0.1)
    --port=<port>  (default 8000)
    --no-reload    (disable auto-reload)
    --reload       (enable auto-reload)
    """
    import uvicorn

    host = "127.0.0.1"
    port = 8000
    reload = True

    for a in _args():
        if a.startswith("--host="):
            host = a.split("=", 1)[1]
        elif a.startswith("--port="):
            value = a.split("=", 1)[1]
            if not value.isdigit():
                sys.exit(f"Invalid port: {value}")
            port = int(value)
        elif a == "--no-reload":
            reload = False
        elif a == "--reload":
            reload = True

    print(f"Starting uvicorn on {host}:{port} (reload={reload})")
    uvicorn.run("raptor.main:app", host=host, port=port, reload=reload)


def run_tests() -> None:
    """Run pytest with any forwarded args."""
    subprocess.run(["pytest"] + _args(), check=True)


def run_migrations() -> None:
    """Run alembic. If no args provided, runs `alembic upgrade head`."""
    args = _args() or ["upgrade", "head"]
    subprocess.run(["alembic"] + args, check=True)


def init_env() -> None:
    """Copy `.env.example` to `.env` if `.env` is missing."""
    root = Path(__file__).resolve().parents[1]
    src = root / ".env.example"
    dst = root / ".env"
    if dst.exists():
        print(f".env already exists at {dst}")
        return
    if not src.exists():
        print(f".env.example not found at {src}")
        return
    shutil.copy(src, dst)
    print(f"Created .env from .env.example at {dst}")


def cleanup_tokens() -> None:
    """Run the expired-token cleanup once, without Celery."""
    from raptor.core.logger import setup_logging
    from raptor.tasks.token_tasks import run_token_cleanup

    setup_logging()
    result = run_token_cleanup()
    print(
        f"Removed {result['refresh_tokens']} refresh token(s) "
        f"and {result['revoked_tokens']} blacklist entr(ies)"
    )


COMMANDS = {
    "runserver": runserver,
    "run-tests": run_tests,
    "test": run_tests,
    "migrate": run_migrations,
    "alembic": run_migrations,
    "init-env": init_env,
    "cleanup-tokens": cleanup_tokens,
}


if __name__ == "__main__":
    # python -m raptor.cli <command> [args]
    if len(sys.argv) <= 1:
        print(__doc__)
        sys.exit(0)
    cmd = sys.argv.pop(1)
    if cmd not in COMMANDS:
        sys.exit(f"Unknown command: {cmd}")
    COMMANDS[cmd]()
