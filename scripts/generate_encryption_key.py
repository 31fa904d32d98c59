#!/usr/bin/env python3
"""Generate (or keep) the ENCRYPTION_KEY used to seal EMR credentials.

Usage:
    python generate_encryption_key.py            # Idempotent: keep a usable key
    python generate_encryption_key.py --force    # Always write a fresh key

Reads/writes ENCRYPTION_KEY in <project-root>/.env (read by get_settings()).

Rotating the key makes every stored credential undecryptable; the sync
reports those attempts as fatal decryption failures until the practice
re-enters its credentials.
"""

from __future__ import annotations

import argparse
import re
import secrets
from pathlib import Path

from dotenv import dotenv_values, set_key

SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_existing(env_path: Path) -> str:
    """Current ENCRYPTION_KEY from the .env file, or an empty string."""
    if not env_path.exists():
        return ""
    return (dotenv_values(env_path).get("ENCRYPTION_KEY") or "").strip()


def _is_strong(key: str) -> bool:
    """True for 64 hex characters (a raw 32-byte key)."""
    return bool(_HEX_KEY.match(key))


def generate_key() -> str:
    return secrets.token_hex(32)


def write_key(env_path: Path, key: str) -> None:
    if not env_path.exists():
        env_path.touch()
    # quote_mode="never" so Docker Compose --env-file reads it verbatim
    set_key(str(env_path), "ENCRYPTION_KEY", key, quote_mode="never")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> str:
    parser = argparse.ArgumentParser(
        description="Generate the credential encryption key for this environment",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing key (stored credentials become unreadable)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=ENV_FILE,
        help="Path of the .env file to update",
    )
    args = parser.parse_args(argv)

    if not args.force:
        existing = _read_existing(args.env_file)
        if _is_strong(existing):
            print("ENCRYPTION_KEY already configured.")
            return existing
        if existing:
            print("  Existing ENCRYPTION_KEY is not a 32-byte hex key; keeping it.")
            print("  Re-run with --force to replace it.")
            return existing

    key = generate_key()
    write_key(args.env_file, key)
    print(f"Wrote ENCRYPTION_KEY to {args.env_file}")
    return key


if __name__ == "__main__":
    main()
