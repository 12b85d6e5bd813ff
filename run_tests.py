#!/usr/bin/env python3
"""
Test runner for relay with marker shortcuts.
"""

import sys
import subprocess
import argparse
from pathlib import Path


def build_command(args) -> list:
    cmd = ["pytest"]

    markers = [m for m in ("unit", "integration", "e2e") if getattr(args, m)]
    expression = " or ".join(markers)
    if args.quick:
        expression = f"({expression}) and not slow" if expression else "not slow"
    if expression:
        cmd.extend(["-m", expression])

    if args.verbose:
        cmd.append("-v")
    if args.pattern:
        cmd.extend(["-k", args.pattern])
    if args.fail_fast:
        cmd.append("-x")

    if args.module:
        cmd.append(f"{args.module}::{args.test}" if args.test else args.module)
    elif args.test:
        cmd.extend(["-k", args.test])
    return cmd


def main():
    parser = argparse.ArgumentParser(
        description="Run relay tests",
        epilog="""
Examples:
  python run_tests.py                                        # Run all tests
  python run_tests.py --unit                                 # Run only unit tests
  python run_tests.py --unit --integration                   # Combine markers
  python run_tests.py tests/test_unit/test_fallback.py       # Run one module
  python run_tests.py tests/test_unit/test_fallback.py TestTierOrder
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--unit", action="store_true", help="Run unit tests")
    parser.add_argument("--integration", action="store_true", help="Run integration tests")
    parser.add_argument("--e2e", action="store_true", help="Run end-to-end CLI tests")
    parser.add_argument("--quick", action="store_true", help="Skip slow tests")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pattern", help="Run tests matching pattern")
    parser.add_argument("--fail-fast", "-x", action="store_true", help="Stop on first failure")
    parser.add_argument("module", nargs="?", help="Test file to run")
    parser.add_argument("test", nargs="?", help="Test class or function within the module")

    args = parser.parse_args()
    cmd = build_command(args)
    project_root = Path(__file__).parent

    print(f"Running: {' '.join(cmd)}")
    print("-" * 50)

    result = subprocess.run(cmd, cwd=project_root)

    print("\n" + "=" * 50)
    print("All tests passed" if result.returncode == 0 else "Some tests failed")
    sys.exit(result.returncode)


if __name__ == "__main__":
    main()
