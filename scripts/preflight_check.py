#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Dummy env so settings load without a real deployment environment
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("STORE_BACKEND", "memory")

    import carrierflow.main
    print("Import carrierflow.main: OK")

    import carrierflow.queue.jobs
    print("Import carrierflow.queue.jobs: OK")

    from carrierflow.core.operators import OPERATORS
    print(f"Operator table: {len(OPERATORS)} operators")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
