#!/usr/bin/env python
"""
Run all tests for the drought-index package.

This script executes each test module with pytest in sequence and provides
a summary. All tests use synthetic data; no input files are needed.
"""

import os
import subprocess
import sys
import time

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))


def run_test(test_file):
    """Run a single test module and return success status."""
    print("\n" + "=" * 70)
    print(f"Running: {test_file}")
    print("=" * 70)

    start_time = time.time()

    result = subprocess.run(
        [sys.executable, "-m", "pytest", "-q", test_file],
        cwd=os.path.join(TESTS_DIR, '..'),
        capture_output=False,
        text=True
    )

    elapsed = time.time() - start_time

    if result.returncode == 0:
        print(f"\n[OK] PASSED ({elapsed:.1f}s)")
        return True

    print(f"\n[X] FAILED ({elapsed:.1f}s)")
    return False


def main():
    """Run all tests."""
    print("\n" + "=" * 70)
    print("DROUGHT-INDEX TEST SUITE")
    print("=" * 70)

    # Bottom-up: building blocks first, end-to-end analyses last
    tests = [
        'tests/test_config.py',
        'tests/test_grid.py',
        'tests/test_sampler.py',
        'tests/test_water_balance.py',
        'tests/test_distributions.py',
        'tests/test_compute.py',
        'tests/test_anomaly.py',
        'tests/test_indices.py',
        'tests/test_pipeline.py',
    ]

    results = {}
    total_start = time.time()

    for test in tests:
        results[os.path.basename(test)] = run_test(test)

    total_elapsed = time.time() - total_start

    # Print summary
    print("\n" + "=" * 70)
    print("TEST SUMMARY")
    print("=" * 70)

    passed = sum(results.values())
    failed = len(results) - passed

    for test_name, success in results.items():
        status = "[OK] PASSED" if success else "[X] FAILED"
        print(f"{status:12s} - {test_name}")

    print("-" * 70)
    print(f"Total: {passed}/{len(results)} test modules passed")
    print(f"Elapsed time: {total_elapsed:.1f}s")
    print("=" * 70)

    if failed > 0:
        print(f"\n[X] {failed} test module(s) failed")
        sys.exit(1)

    print("\n[OK] All tests passed!")
    sys.exit(0)


if __name__ == '__main__':
    main()
