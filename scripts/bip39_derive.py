#!/usr/bin/env python3
"""Recover an ICP principal from a BIP39 mnemonic.

Derivation path: m/44'/223'/0'/0/0
"""

import sys

from icp_keys import DERIVATION_PATH, IcpKeyError, format_identity, identity_from_mnemonic


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(f"Usage: {sys.argv[0]} <seed words...>")
        sys.exit(1)

    seed_phrase = " ".join(args)

    try:
        identity = identity_from_mnemonic(seed_phrase)
    except IcpKeyError as exc:
        print(f"Error: {exc}.")
        sys.exit(1)

    print(f"Derivation path: {DERIVATION_PATH}")
    format_identity(identity, show_secret=True)


if __name__ == "__main__":
    main()
