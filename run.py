#!/usr/bin/env python3
"""Convenience runner for the ride anomaly replay.

Usage:
    python run.py --samples positions.jsonl --ride ride.json [--no-llm]
"""
import logging
from ride_anomaly.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    main()
