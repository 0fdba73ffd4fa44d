#!/usr/bin/env python3
"""Generate a vanity ICP principal with a given prefix."""

import logging
import re
import sys

from icp_keys import PRINCIPAL_ALPHABET, IcpKeyError
from vanity_search import (
    DEFAULT_PREFIX,
    ConsoleProgress,
    SearchError,
    expected_attempts,
    search,
    search_parallel,
    validate_prefix,
)

USAGE = f"""
ICP Vanity Address Generator

Usage:
  {sys.argv[0]} [options] [prefix] [count]

Arguments:
  prefix    Target prefix for the principal (default: {DEFAULT_PREFIX})
  count     Number of addresses to generate (default: 1)

Options:
  -j, --workers N   Search with N worker processes (default: 1)
  -v, --verbose     Log debug details to stderr
  -h, --help        Show this help and exit

Valid characters: {PRINCIPAL_ALPHABET} and '-' after every fifth character

Examples:
  {sys.argv[0]} aaaaa
  {sys.argv[0]} abc 3
  {sys.argv[0]} -j 4 hello
"""


def parse_count(value) -> int:
    """Leading integer of ``value``; anything unusable falls back to 1."""
    match = re.match(r"\s*[+-]?\d+", value or "")
    if not match:
        return 1
    count = int(match.group())
    return count if count >= 1 else 1


def parse_args(args):
    """Split argv into (prefix, count, workers, verbose)."""
    workers = 1
    verbose = False
    positional = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-j", "--workers") and i + 1 < len(args):
            workers = parse_count(args[i + 1])
            i += 2
            continue
        if arg.startswith("--workers="):
            workers = parse_count(arg.split("=", 1)[1])
        elif arg in ("-v", "--verbose"):
            verbose = True
        else:
            positional.append(arg)
        i += 1

    prefix = (positional[0] if positional else "") or DEFAULT_PREFIX
    count = parse_count(positional[1] if len(positional) > 1 else None)
    return prefix, count, workers, verbose


def print_result(result):
    print(f"\nMATCH FOUND after {result.iterations:,} iterations!")
    print(f"Time elapsed: {result.elapsed:.2f}s")
    print(f"Principal: {result.principal}")
    print(f"Mnemonic: {result.mnemonic}")
    print(f"Rate: {round(result.rate)} attempts/second")


def generate_vanity_address(prefix: str, workers: int = 1):
    print(f"Searching for ICP Principal with prefix: '{prefix}'")
    print(f"Estimated attempts needed: ~{expected_attempts(prefix):,}")
    if workers > 1:
        print(f"Using {workers} worker processes")
    print()

    observer = ConsoleProgress()
    if workers > 1:
        result = search_parallel(prefix, workers=workers, observer=observer)
    else:
        result = search(prefix, observer=observer)
    print_result(result)
    print("\nVanity address generation completed successfully!")
    return result


def generate_multiple_addresses(prefix: str, count: int, workers: int = 1):
    print(f"Generating {count} vanity address(es) with prefix: '{prefix}'")
    print()

    results = []
    for i in range(1, count + 1):
        print(f"--- Generating address {i}/{count} ---")
        results.append(generate_vanity_address(prefix, workers))
        if i < count:
            print("\n" + "=" * 50 + "\n")
    return results


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv

    if "--help" in args or "-h" in args:
        print(USAGE)
        return

    prefix, count, workers, verbose = parse_args(args)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    problem = validate_prefix(prefix)
    if problem:
        print(f"Error: {problem}", file=sys.stderr)
        print(f"Valid characters: {PRINCIPAL_ALPHABET}", file=sys.stderr)
        sys.exit(1)

    try:
        if count == 1:
            generate_vanity_address(prefix, workers)
        else:
            generate_multiple_addresses(prefix, count, workers)
    except (IcpKeyError, SearchError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
