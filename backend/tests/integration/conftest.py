"""
Integration tests conftest - imports all fixtures from parent conftest.

Integration tests run the registry sync, orchestrator, recheck and backfill
against a temporary SQLite file shared by their worker threads.
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Import all fixtures from parent conftest
from conftest import *
