#!/usr/bin/env python3
"""Test runner for the buildsync test suites."""

import sys
import subprocess
from pathlib import Path


def run_test(test_file: str, description: str) -> bool:
    """Run a single test file and return success status."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"File: {test_file}")
    print('='*60)

    result = subprocess.run([sys.executable, "-m", "unittest", "-v", test_file[:-3]])

    success = result.returncode == 0
    print(f"\n{'PASSED' if success else 'FAILED'}: {description}")
    return success


def main():
    """Run all buildsync test suites."""
    print("buildsync Test Suite")
    print("="*60)

    tests = [
        ("test_config_platform.py", "Configuration and Platform Detection"),
        ("test_errors_subcommand.py", "Errors and Subprocess Runner"),
        ("test_file_lock.py", "Working Copy Locking"),
        ("test_environment.py", "Environment Model"),
        ("test_environment_export.py", "Environment Export"),
        ("test_prefix_scanner.py", "Prefix Scanner and add_prefix"),
        ("test_merge_status.py", "Merge Status and Remote Configuration"),
        ("test_patching.py", "Patch Application"),
        ("test_importer.py", "Importer Workflow"),
        ("test_git_import.py", "Git Import Scenarios"),
        ("test_cli.py", "Command Line Interface"),
    ]

    results = []
    for test_file, description in tests:
        if Path(test_file).exists():
            success = run_test(test_file, description)
            results.append((test_file, description, success))
        else:
            print(f"Test file not found: {test_file}")
            results.append((test_file, description, False))

    # Summary
    print(f"\n{'='*60}")
    print("TEST SUITE SUMMARY")
    print("="*60)

    passed = 0
    for test_file, description, success in results:
        status = "PASS" if success else "FAIL"
        print(f"{status} {description}")
        if success:
            passed += 1

    print(f"\nResults: {passed}/{len(results)} suites passed")

    if passed == len(results):
        print("\nALL TESTS PASSED!")
        return True
    else:
        print(f"\n{len(results) - passed} suites failed")
        return False


if __name__ == "__main__":
    try:
        success = main()
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\n\nTest suite interrupted by user")
        sys.exit(1)
