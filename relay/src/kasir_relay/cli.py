"""Command line entrypoint for the kasir relay."""

from __future__ import annotations

import argparse
from collections.abc import Sequence

from kasir_relay.application.credentials import sha256_hex


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kasir-relay", description="Kasir QR notification relay.")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the relay under uvicorn.")
    serve.add_argument("--host", default=None, help="Listen interface (defaults to KASIR_RELAY_HOST / HOST).")
    serve.add_argument("--port", type=int, default=None, help="Listen port (defaults to KASIR_RELAY_PORT / PORT).")

    digest = commands.add_parser(
        "hash-secret",
        help="Print the SHA-256 digest to configure as KASIR_SECRET_SHA256.",
    )
    digest.add_argument("secret", help="Shared secret handed to kasir terminals.")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "hash-secret":
        print(sha256_hex(args.secret))
        return

    # Importing the server module loads settings and configures logging.
    from kasir_relay.server import main as serve

    serve(host=args.host, port=args.port)


__all__ = ["build_parser", "main"]
