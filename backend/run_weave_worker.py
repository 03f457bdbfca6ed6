#!/usr/bin/env python3
"""
Weave Worker Runner
===================

Runs the WeaveWorker that consumes {scope, phase} jobs from Redis and
drives the weave phases for each scope.

Queue: queue:weave:run
Input: queue:signals:{scope} (candidate signals, drained by SCRAPE)
Output: Signal / Tension / Story graph in Neo4j

Usage:
    python run_weave_worker.py
"""

import asyncio
import os
import sys
import logging

from dotenv import load_dotenv

# Add parent to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from workers.weave_worker import main

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)

if __name__ == "__main__":
    asyncio.run(main())
