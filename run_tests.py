#!/usr/bin/env python3
"""
Test runner for the shading optimizer
"""

import unittest
import sys
from pathlib import Path

# Add current directory to path for imports
sys.path.append(str(Path(__file__).parent))


def run_all_tests():
    """Discover and run every test module under tests/"""
    loader = unittest.TestLoader()
    tests_dir = Path(__file__).parent / 'tests'
    suite = unittest.TestSuite()

    suite.addTests(loader.discover(str(tests_dir), pattern='test_*.py', top_level_dir=str(tests_dir)))
    suite.addTests(loader.discover(
        str(tests_dir / 'test_shade_ga'), pattern='test_*.py', top_level_dir=str(tests_dir / 'test_shade_ga')
    ))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return result.wasSuccessful()


if __name__ == "__main__":
    print("Running Shading Optimizer Tests")
    print("=" * 60)

    success = run_all_tests()

    # Summary
    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    print(f"Unit tests: {'PASSED' if success else 'FAILED'}")

    sys.exit(0 if success else 1)
