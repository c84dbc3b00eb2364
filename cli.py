"""Dev CLI for fleet-backup."""

import os
import subprocess
import sys
from pathlib import Path

COMMANDS = {
    "dev": "Run the status service with auto-reload, backing up to ./data/backup",
    "start": "Run the status service in production mode",
    "backup": "Run a one-off backup (pass --s/--d/--u/--p/--f/--c after the command)",
}

APP = "fleet_backup.main:app"
ROOT = Path(__file__).parent
DEV_OUTPUT_DIR = ROOT / "data" / "backup"


def dev():
    subprocess.run(
        [
            sys.executable,
            "-m",
            "uvicorn",
            APP,
            "--reload",
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
        env={**os.environ, "OUTPUT_DIR": str(DEV_OUTPUT_DIR), "LOG_LEVEL": "DEBUG"},
    )


def start():
    subprocess.run(
        [
            sys.executable,
            "-m",
            "uvicorn",
            APP,
            "--host",
            "0.0.0.0",
            "--port",
            "8000",
        ],
    )


def backup():
    from fleet_backup.cli import main as backup_main

    sys.exit(backup_main(sys.argv[2:]))


def usage():
    print("Usage: uv run cli.py <command>\n")
    print("Commands:")
    for name, desc in COMMANDS.items():
        print(f"  {name:14s} {desc}")
    sys.exit(1)


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        usage()

    cmd = sys.argv[1]
    dispatch = {
        "dev": dev,
        "start": start,
        "backup": backup,
    }
    dispatch[cmd]()


if __name__ == "__main__":
    main()
