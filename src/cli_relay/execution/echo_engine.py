"""Deterministic local stand-in for the analysis engine CLI.

Accepts the same ``-m/-s/-p`` flags as the real engine and picks its
behavior from the model name and prompt, so integration tests can drive the
relay end to end without network access.
"""

from __future__ import annotations

import argparse
import sys
import time

QUOTA_MODEL = "quota-exhausted"
QUOTA_HANG_MODEL = "quota-hang"
SLOW_MODEL = "slow"
FAIL_PREFIX = "fail:"
LINES_PREFIX = "lines:"

QUOTA_STDERR = (
    "Error: RESOURCE_EXHAUSTED\n"
    "Quota exceeded for quota metric 'Gemini 2.5 Pro Requests' "
    "and limit 'Gemini 2.5 Pro Requests per day per user'\n"
    "status: 429\n"
    '"reason": "rateLimitExceeded"\n'
)


def main(argv: list[str] | None = None) -> int:
    """Run local deterministic engine behavior."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-m", "--model", default="")
    parser.add_argument("-s", "--sandbox", action="store_true")
    parser.add_argument("-p", "--prompt", default=None)
    args = parser.parse_args(argv)

    prompt = args.prompt if args.prompt is not None else sys.stdin.read()
    model = args.model

    if model == QUOTA_MODEL:
        sys.stderr.write(QUOTA_STDERR)
        return 1

    if model == QUOTA_HANG_MODEL:
        sys.stderr.write(QUOTA_STDERR)
        sys.stderr.flush()
        time.sleep(30)
        return 1

    if model == SLOW_MODEL:
        sys.stdout.write("partial\n")
        sys.stdout.flush()
        time.sleep(30)
        return 0

    if prompt.startswith(FAIL_PREFIX):
        sys.stderr.write(prompt[len(FAIL_PREFIX) :].strip() + "\n")
        return 2

    if prompt.startswith(LINES_PREFIX):
        count = int(prompt[len(LINES_PREFIX) :].strip())
        for number in range(1, count + 1):
            sys.stdout.write(f"line {number:05d}\n")
        return 0

    sandbox = " sandbox" if args.sandbox else ""
    sys.stdout.write(f"[{model or 'default'}{sandbox}] {prompt.strip()}\n")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
