#!/usr/bin/env python3
"""Sign exchange terms off-band and print the payload for a relayer.

The private key is read from AUTHORIZER_PRIVATE_KEY (or
AUTHORIZER_PRIVATE_KEY_<NAME> with --key NAME), never from the command line.

Example:
    python scripts/sign_terms.py \\
        --asset-a 0x5FbDB2315678afecb367f032d93F642f64180aa3 --amount-a 10000000000000000000 \\
        --asset-b 0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512 --amount-b 10000000000000000000 \\
        --valid-for 86400
"""

import argparse
import json
import sys
import time

from dotenv import load_dotenv

load_dotenv()

from metaswap.config import get_settings
from metaswap.signing.local import LocalSigner
from metaswap.terms import ExchangeTerms


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sign swap terms for a relayer")
    parser.add_argument("--asset-a", required=True, help="Asset you give")
    parser.add_argument("--amount-a", required=True, type=int, help="Amount you give (base units)")
    parser.add_argument("--asset-b", required=True, help="Asset you receive")
    parser.add_argument("--amount-b", required=True, type=int, help="Amount you receive (base units)")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--deadline", type=int, help="Absolute unix deadline")
    group.add_argument("--valid-for", type=int, help="Seconds from now until the deadline")
    parser.add_argument("--key", default="DEFAULT", help="Key name (AUTHORIZER_PRIVATE_KEY_<NAME>)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    signer = LocalSigner()
    authorizer = signer.get_address(args.key)
    if authorizer is None:
        print(f"No key configured for {args.key}", file=sys.stderr)
        return 1

    deadline = args.deadline if args.deadline is not None else int(time.time()) + args.valid_for

    try:
        terms = ExchangeTerms(
            asset_a=args.asset_a,
            amount_a=args.amount_a,
            asset_b=args.asset_b,
            amount_b=args.amount_b,
            deadline=deadline,
        )
    except ValueError as e:
        print(f"Invalid terms: {e}", file=sys.stderr)
        return 1

    digest, signature = signer.sign_terms(args.key, terms, get_settings().swap_domain)

    print(json.dumps(
        {
            "terms": terms.to_dict(),
            "digest": digest.hex,
            "signature": signature.to_hex(),
            "authorizer": authorizer,
        },
        indent=2,
    ))
    return 0


if __name__ == "__main__":
    sys.exit(main())
