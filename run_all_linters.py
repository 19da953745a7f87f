#!/usr/bin/env python3
"""Run every formatter, linter and the test suite in one go.

Steps, in order:
1. Black format check
2. isort import order check
3. Ruff static checks
4. Pylint static analysis
5. pytest

All output is collected so failures can be reviewed in one place.
"""

from pathlib import Path
import subprocess
import sys


def run_command(cmd: list[str], description: str) -> tuple[bool, str]:
    """Run a command and return its success flag and output."""
    print(f"\n{'='*60}")
    print(f"Running: {description}")
    print(f"Command: {' '.join(cmd)}")
    print("=" * 60)

    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=False, cwd=Path(__file__).parent
        )

        success = result.returncode == 0
        output = result.stdout + result.stderr

        if success:
            print("✅ OK")
        else:
            print("❌ FAILED")

        if output.strip():
            print("\nOutput:")
            print(output)
        else:
            print("(no output)")

        return success, output

    except Exception as e:  # pylint: disable=broad-exception-caught
        print(f"❌ Could not run: {e}")
        return False, str(e)


def main() -> None:
    """Run all checks in sequence."""
    print("Running all linters, formatters and tests...")

    commands = [
        ([sys.executable, "-m", "black", ".", "--check"], "Black format check"),
        ([sys.executable, "-m", "isort", ".", "--check-only"], "isort import order check"),
        ([sys.executable, "-m", "ruff", "check", "."], "Ruff static checks"),
        ([sys.executable, "-m", "pylint", "app", "core", "infrastructure"], "Pylint analysis"),
        ([sys.executable, "-m", "pytest", "-q"], "pytest"),
    ]

    results = []

    for cmd, description in commands:
        success, output = run_command(cmd, description)
        results.append((description, success, output))

    print(f"\n{'='*60}")
    print("Summary")
    print("=" * 60)

    all_passed = True
    for description, success, _ in results:
        status = "✅ passed" if success else "❌ failed"
        print(f"{description}: {status}")
        if not success:
            all_passed = False

    print(f"\nOverall: {'✅ all passed' if all_passed else '❌ errors found'}")

    if not all_passed:
        print("\nDetails:")
        for description, success, output in results:
            if not success and output.strip():
                print(f"\n--- {description} ---")
                print(output)

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
