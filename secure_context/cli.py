#!/usr/bin/env python3
"""
secure-context Command Line Interface

Usage:
    secure-context keygen
    secure-context public-key
    secure-context hash --file <snapshot.json>
    secure-context attest --url <page-url>
    secure-context verify-token --url <page-url> --token <token>
    secure-context enroll --approval-token <token>
    secure-context revoke --yes
    secure-context serve [--host 127.0.0.1] [--port 8765]
"""

import argparse
import asyncio
import json
import sys

from . import config
from .errors import SecureContextError
from .logging_config import configure_logging


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _runtime():
    from .runtime import AttestationRuntime
    return AttestationRuntime.from_config()


def cmd_keygen(args):
    """Create the device key pair if none exists."""
    runtime = _runtime()
    key_pair = asyncio.run(runtime.identity.ensure_key_pair())
    print(f"kid: {key_pair.kid}")
    print(f"public_key: {key_pair.public_key_hex()}")
    print(f"Key store: {config.KEY_STORE_PATH}", file=sys.stderr)
    return 0


def cmd_public_key(args):
    """Print the device public key."""
    runtime = _runtime()
    print(runtime.identity.public_key_hex())
    return 0


def cmd_hash(args):
    """Compute the context hash of a snapshot JSON file."""
    from .context import ContextSnapshot
    from .hashing import context_hash
    from .scoring import score

    snapshot = ContextSnapshot.from_dict(load_json(args.file))
    print(f"context_hash: {context_hash(snapshot)}")
    print(f"consistency_score: {score(snapshot).value}")
    return 0


def cmd_attest(args):
    """Run one attestation cycle for a page URL."""
    runtime = _runtime()

    async def run():
        await runtime.identity.ensure_key_pair()
        return await runtime.attestor.verify_context(args.url)

    response = asyncio.run(run())
    print(json.dumps(response.to_wire(), indent=2))
    if not response.success:
        print(f"\n✗ {response.error}", file=sys.stderr)
        return 1
    if response.token and response.token.token is None:
        print("\n- Attestation not applicable for this site", file=sys.stderr)
        return 0
    if response.token.consistency_score < config.CONSISTENCY_THRESHOLD:
        print("\n✗ Insufficient consistency score", file=sys.stderr)
        return 1
    print("\n✓ Token issued", file=sys.stderr)
    return 0


def cmd_verify_token(args):
    """Ask the site's Attestation Service whether a token is valid."""
    runtime = _runtime()
    site = runtime.site_for(args.url)
    if site is None:
        print("✗ Unsupported site", file=sys.stderr)
        return 1
    valid = asyncio.run(runtime.client.verify_token(site.issuance_endpoint, args.token))
    print("✓ VALID" if valid else "✗ INVALID")
    return 0 if valid else 1


def cmd_enroll(args):
    """Generate an enrollment artifact for a new device."""
    runtime = _runtime()
    enrollment = asyncio.run(runtime.identity.enroll(args.approval_token))
    print(json.dumps(enrollment.to_wire(), indent=2))
    return 0


def cmd_revoke(args):
    """Revoke this device and erase its key pair."""
    if not args.yes:
        print("Refusing to revoke without --yes. This action cannot be undone.", file=sys.stderr)
        return 2
    runtime = _runtime()
    asyncio.run(runtime.identity.revoke(confirm=True))
    print("✓ Device revoked; local key pair erased")
    return 0


def cmd_serve(args):
    """Run the background service."""
    import uvicorn

    uvicorn.run("secure_context.service:app", host=args.host, port=args.port)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="secure-context attestation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  secure-context keygen
  secure-context attest -u https://www.walmart.com/store/5260
  secure-context hash -f snapshot.json
  secure-context revoke --yes
        """
    )
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("keygen", help="Create the device key pair")
    subparsers.add_parser("public-key", help="Print the device public key")

    hash_parser = subparsers.add_parser("hash", help="Hash and score a snapshot")
    hash_parser.add_argument("-f", "--file", required=True, help="Snapshot JSON file")

    attest_parser = subparsers.add_parser("attest", help="Run one attestation cycle")
    attest_parser.add_argument("-u", "--url", required=True, help="Page URL")

    verify_parser = subparsers.add_parser("verify-token", help="Check a token with the service")
    verify_parser.add_argument("-u", "--url", required=True, help="Page URL of the issuing site")
    verify_parser.add_argument("-t", "--token", required=True, help="Token to verify")

    enroll_parser = subparsers.add_parser("enroll", help="Generate a device enrollment artifact")
    enroll_parser.add_argument("-a", "--approval-token", required=True, help="Owner approval token")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke this device (irreversible)")
    revoke_parser.add_argument("--yes", action="store_true", help="Confirm revocation")

    serve_parser = subparsers.add_parser("serve", help="Run the background service")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8765)

    args = parser.parse_args(argv)
    configure_logging(args.log_level, config.LOG_JSON)

    commands = {
        "keygen": cmd_keygen,
        "public-key": cmd_public_key,
        "hash": cmd_hash,
        "attest": cmd_attest,
        "verify-token": cmd_verify_token,
        "enroll": cmd_enroll,
        "revoke": cmd_revoke,
        "serve": cmd_serve,
    }
    if args.command not in commands:
        parser.print_help()
        return 1
    try:
        return commands[args.command](args)
    except SecureContextError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
