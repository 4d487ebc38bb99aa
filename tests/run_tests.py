#!/usr/bin/env python3
import os
import sys
import unittest


def run_tests():
    """Run all unit tests under tests/unit."""
    # Add project root to path
    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

    start_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'unit')
    loader = unittest.TestLoader()
    suite = loader.discover(start_dir, pattern='test_*.py', top_level_dir=start_dir)

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    if not result.wasSuccessful():
        sys.exit(1)


if __name__ == "__main__":
    run_tests()
