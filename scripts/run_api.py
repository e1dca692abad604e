#!/usr/bin/env python3
"""
Run the datastore registry / optimization API with env loaded from Azure Key Vault (or .env).
Usage: python scripts/run_api.py [uvicorn args...]

Example:
  python scripts/run_api.py --reload --host 0.0.0.0 --port 8000
"""
import subprocess
import sys
from pathlib import Path

from scripts.keyvault_loader import load_env

_root = Path(__file__).resolve().parent.parent


def main() -> int:
    load_env()
    args = [sys.executable, "-m", "uvicorn", "api.main:app", *sys.argv[1:]]
    return subprocess.run(args, cwd=str(_root)).returncode


if __name__ == "__main__":
    raise SystemExit(main())
