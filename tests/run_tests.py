#!/usr/bin/env python3
"""
Test runner for the StrokeCheck screening core.

This script runs all the unit tests in the tests/unit directory.
"""

import unittest
import sys
import os
import importlib.util
from pathlib import Path

def load_test_modules():
    """Discover and load all test modules in tests/unit directory."""
    test_dir = Path(__file__).parent / 'unit'
    test_modules = []

    for file in sorted(test_dir.glob('test_*.py')):
        module_name = file.stem
        spec = importlib.util.spec_from_file_location(module_name, file)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        test_modules.append(module)

    return test_modules

def run_standard_tests(test_modules, verbosity=2):
    """Run tests using unittest's standard TestCase framework (async cases included)."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    for module in test_modules:
        suite.addTests(loader.loadTestsFromModule(module))

    runner = unittest.TextTestRunner(verbosity=verbosity)
    return runner.run(suite)

def main():
    """Main entry point."""
    # Make the package importable without installing it
    root_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
    if root_dir not in sys.path:
        sys.path.insert(0, root_dir)

    test_modules = load_test_modules()
    print(f"Found {len(test_modules)} test modules")

    result = run_standard_tests(test_modules)
    return 0 if result.wasSuccessful() else 1

if __name__ == "__main__":
    sys.exit(main())
