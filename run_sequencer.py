#!/usr/bin/env python3
"""Sequence Control — chat sequence scheduler service.

Launch: python3 run_sequencer.py
Serves at http://0.0.0.0:8000 (or PORT env var)
"""

import logging
import os

import uvicorn

from sequence_control.config import HOST, LOG_LEVEL, PORT


def main():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    print("=" * 60)
    print("  Sequence Control")
    print("=" * 60)

    # Validate required env vars
    supabase_url = os.environ.get("SUPABASE_URL", "")
    if not supabase_url:
        print("\n  WARNING: SUPABASE_URL not set. Set environment variables:")
        print("    SUPABASE_URL, SUPABASE_SERVICE_KEY")
        print("  Continuing anyway for local development...\n")

    # Push authoring files into the definition store
    if supabase_url:
        print("\n[1/2] Syncing sequence definitions to Supabase...")
        try:
            from sequence_control.sync import sync_definitions
            stats = sync_definitions()
            print(f"  -> {stats['synced']} definitions synced")
            print(f"  -> {stats['active']} active, {stats['inactive']} inactive")
        except Exception as e:
            print(f"  -> Sync failed: {e}")
            print("  -> Continuing without sync...")
    else:
        print("\n[1/2] Skipping sync (no Supabase connection)")

    print(f"[2/2] Starting server on {HOST}:{PORT}")
    print("  Press Ctrl+C to stop\n")

    from sequence_control.app import create_app
    app = create_app()
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
