#!/usr/bin/env python3
"""Create the SecureBank tables, or print a fresh PII encryption key.

Usage:
    # Create tables in DATABASE_URL (safe to run repeatedly):
    DATABASE_URL=postgresql://app@localhost/securebank python scripts/init_db.py

    # Generate a value for ENCRYPTION_KEY:
    python scripts/init_db.py --generate-key

Environment Variables:
    DATABASE_URL: PostgreSQL connection string
    USE_MEMORY_STORE: set to true to exercise the in-memory store instead
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def generate_key() -> str:
    from securebank.service.crypto import generate_encryption_key

    return generate_encryption_key()


def init_schema() -> str:
    """Build the configured store and ensure its schema; returns the store type."""
    # Import here so config is read after argument parsing
    from securebank.config import get_settings
    from securebank.service.runtime import build_store

    settings = get_settings()
    store = build_store(settings)
    try:
        store.ensure_schema()
        # A second pass must be a no-op
        store.ensure_schema()
    finally:
        store.close()
    return type(store).__name__


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Initialise SecureBank storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="Print a new base64 AES-256 key for ENCRYPTION_KEY and exit",
    )
    args = parser.parse_args()

    if args.generate_key:
        print(generate_key())
        return

    try:
        store_type = init_schema()
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(f"Schema ready ({store_type})")


if __name__ == "__main__":
    main()
