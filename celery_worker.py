#!/usr/bin/env python3
"""
Celery worker script for StoreHub.
Runs the e-mail queue and, with ``--beat``, the periodic subscription refresh.
"""

import sys
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app

    argv = [
        "worker",
        "--loglevel=info",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ]
    # Embedded beat: run only one worker with it
    if "--beat" in sys.argv[1:]:
        argv.append("--beat")

    celery_app.start(argv)
