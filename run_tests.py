#!/usr/bin/env python3
"""
Test runner for the Vibe Check notifier.

Usage:
    python run_tests.py                           # Run all tests
    python run_tests.py -k quiet_hours            # Run specific test pattern
    python run_tests.py --cov                     # Run with coverage
    python run_tests.py --module dispatcher       # Run one test module
"""

import sys
import subprocess
from pathlib import Path

TEST_MODULES = {
    "quiet_hours": "tests/test_quiet_hours.py",
    "scheduler": "tests/test_interval_scheduler.py",
    "store": "tests/test_notification_store.py",
    "dispatcher": "tests/test_push_dispatcher.py",
    "fanout": "tests/test_group_fanout.py",
    "orchestrator": "tests/test_ping_orchestrator.py",
    "router": "tests/test_cron_router.py",
    "task": "tests/test_ping_dispatcher_task.py",
    "lock": "tests/test_run_lock.py",
}


def run_tests(targets, args=None):
    """Run tests with pytest."""
    cmd = [sys.executable, "-m", "pytest", *targets, "-v", "--tb=short"]
    cmd.extend(args or [])

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Run tests for the ping dispatcher")
    parser.add_argument("-k", "--keyword", help="Run tests matching keyword")
    parser.add_argument("--module", choices=sorted(TEST_MODULES), help="Run one test module")
    parser.add_argument("--cov", action="store_true", help="Run with coverage")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--pdb", action="store_true", help="Drop into debugger on failure")

    args = parser.parse_args()

    targets = [TEST_MODULES[args.module]] if args.module else ["tests"]
    pytest_args = []

    if args.keyword:
        pytest_args.extend(["-k", args.keyword])

    if args.cov:
        pytest_args.extend(
            [
                "--cov=app.services.notifications",
                "--cov=app.tasks",
                "--cov=app.routers",
                "--cov-report=html",
                "--cov-report=term-missing",
            ]
        )

    if args.verbose:
        pytest_args.append("-vv")

    if args.pdb:
        pytest_args.append("--pdb")

    return run_tests(targets, pytest_args)


if __name__ == "__main__":
    sys.exit(main())
