#!/usr/bin/env python3
"""
Apply database migrations.
Usage: python3 run_migrations.py
"""
import subprocess
import sys
from pathlib import Path


def run_migrations():
    """Run `alembic upgrade head` inside bzr_portal/."""
    backend_dir = Path(__file__).parent / "bzr_portal"

    print("Applying database migrations...")

    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=backend_dir,
            check=True,
            capture_output=True,
            text=True
        )

        print("Migrations applied.")
        if result.stdout:
            print(result.stdout)

    except subprocess.CalledProcessError as e:
        print("Migration failed:")
        if e.stderr:
            print(e.stderr)
        if e.stdout:
            print(e.stdout)
        sys.exit(1)
    except FileNotFoundError:
        print("alembic not found. Install the project first: pip install -e .")
        sys.exit(1)


if __name__ == "__main__":
    run_migrations()
