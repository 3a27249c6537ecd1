#!/usr/bin/env python3
"""Simple CLI for exercising Sign-In with Ethereum locally"""

import argparse
import asyncio
import json
import os
import sys
from datetime import timedelta
from typing import Optional

import httpx

from siweauth.auth import LocalAccountWallet, generate_nonce, sign_in
from siweauth.auth.message import utc_now
from siweauth.config import settings


def _load_wallet(key: Optional[str], chain_id: int) -> LocalAccountWallet:
    key = key or os.getenv("SIWE_PRIVATE_KEY")
    if not key:
        raise SystemExit("❌ Provide --key or set SIWE_PRIVATE_KEY")
    return LocalAccountWallet(key, chain_id=chain_id)


def cli_new_key(chain_id: int):
    """Generate a throwaway key pair"""
    wallet = LocalAccountWallet.generate(chain_id=chain_id)
    print(f"Address:     {wallet.address}")
    print(f"Private key: {wallet.private_key_hex}")


async def cli_sign(
    key: Optional[str],
    domain: str,
    uri: str,
    chain_id: int,
    nonce: Optional[str],
    statement: Optional[str],
    expires_in: Optional[int],
):
    """Build and sign a message offline, printing the payload /auth/verify expects"""
    wallet = _load_wallet(key, chain_id)
    now = utc_now().replace(microsecond=0)
    payload = await sign_in(
        wallet,
        domain=domain,
        uri=uri,
        nonce=nonce or generate_nonce(),
        statement=statement,
        issued_at=now,
        expiration_time=now + timedelta(seconds=expires_in) if expires_in else None,
    )
    print(json.dumps({"message": payload.message, "signature": payload.signature}, indent=2))


async def cli_login(base_url: str, key: Optional[str], chain_id: int, server_message: bool):
    """Run the whole sign-in flow against a running server"""
    wallet = _load_wallet(key, chain_id)
    address = await wallet.get_address()
    print(f"🔑 Signing in as {address} on chain {chain_id}...")

    async with httpx.AsyncClient(base_url=base_url, timeout=30) as client:
        if server_message:
            response = await client.post("/auth/message", json={"address": address, "chain_id": chain_id})
            response.raise_for_status()
            message = response.json()["message"]
            signature = await wallet.sign_message(message.encode("utf-8"))
        else:
            info = (await client.get("/")).json()
            response = await client.post("/auth/nonce")
            response.raise_for_status()
            payload = await sign_in(
                wallet,
                domain=info["domain"],
                uri=base_url,
                nonce=response.json()["nonce"],
                statement=settings.siwe_statement,
            )
            message, signature = payload.message, payload.signature

        print("\n📝 Message:")
        print("-" * 50)
        print(message)
        print("-" * 50)

        response = await client.post("/auth/verify", json={"message": message, "signature": signature})

    data = response.json()
    if response.status_code == 200:
        print(f"✅ Accepted: {data['address']} (chain {data['chain_id']})")
        return True

    detail = data.get("detail", {})
    if isinstance(detail, dict):
        print(f"❌ Rejected: {detail.get('reason')} - {detail.get('detail')}")
    else:
        print(f"❌ Error {response.status_code}: {detail}")
    return False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sign-In with Ethereum CLI")
    subparsers = parser.add_subparsers(dest="command")

    key_parser = subparsers.add_parser("new-key", help="Generate a throwaway key pair")
    key_parser.add_argument("--chain-id", type=int, default=settings.siwe_chain_id)

    sign_parser = subparsers.add_parser("sign", help="Build and sign a message offline")
    sign_parser.add_argument("--key", help="Hex private key (default: $SIWE_PRIVATE_KEY)")
    sign_parser.add_argument("--domain", default=settings.siwe_domain)
    sign_parser.add_argument("--uri", default=settings.siwe_uri)
    sign_parser.add_argument("--chain-id", type=int, default=settings.siwe_chain_id)
    sign_parser.add_argument("--nonce", help="Server-issued nonce (default: random)")
    sign_parser.add_argument("--statement", default=settings.siwe_statement)
    sign_parser.add_argument("--expires-in", type=int, help="Seconds until the message expires")

    login_parser = subparsers.add_parser("login", help="Sign in against a running server")
    login_parser.add_argument("--base-url", default=f"http://{settings.host}:{settings.port}")
    login_parser.add_argument("--key", help="Hex private key (default: $SIWE_PRIVATE_KEY)")
    login_parser.add_argument("--chain-id", type=int, default=settings.siwe_chain_id)
    login_parser.add_argument(
        "--server-message",
        action="store_true",
        help="Let the server prepare the message instead of building it locally",
    )

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    command = args.command.lower()

    if command == "new-key":
        cli_new_key(args.chain_id)

    elif command == "sign":
        if args.expires_in is not None and args.expires_in <= 0:
            raise ValueError("--expires-in must be positive")
        await cli_sign(
            args.key,
            args.domain,
            args.uri,
            args.chain_id,
            args.nonce,
            args.statement,
            args.expires_in,
        )

    elif command == "login":
        accepted = await cli_login(args.base_url, args.key, args.chain_id, args.server_message)
        return 0 if accepted else 1

    else:
        print(f"❌ Unknown command: {command}")
        parser.print_help()
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
