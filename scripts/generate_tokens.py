# scripts/generate_tokens.py
"""
Use this script to generate agent and user tokens for the .env file.

Usage:
    python scripts/generate_tokens.py --agent waker_lan --user alice --user bob
"""

import argparse
import secrets


def generate_token(length=32) -> str:
    """
    Generate a secure API token.
    """
    return secrets.token_urlsafe(length)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Generate tokens for AUTHORIZED_TOKENS and USER_TOKENS.")
    parser.add_argument(
        "--length", type=int, default=32, help="Length of the generated token (default: 32)"
    )
    parser.add_argument(
        "--agent",
        action="append",
        default=None,
        help="Name of an agent token to generate (repeatable, default: waker)",
    )
    parser.add_argument(
        "--user", action="append", default=[], help="Principal to generate a user token for (repeatable)"
    )
    args = parser.parse_args()

    for name in args.agent or ["waker"]:
        print(f"AUTHORIZED_TOKENS__{name}={generate_token(args.length)}")
    for principal in args.user:
        print(f"USER_TOKENS__{principal}={generate_token(args.length)}")
