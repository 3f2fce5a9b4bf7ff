from __future__ import annotations

import argparse
import asyncio
import sys

from premiumcollect.persistence.db import SessionLocal
from premiumcollect.persistence.repos import captives as captives_repo
from premiumcollect.services.captives import issue_api_key


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit to avoid issuing keys to the wrong captive.
    parser = argparse.ArgumentParser(description="Create an API key for a cell captive")
    parser.add_argument("--captive-code", required=True, help="Cell captive code, e.g. ALPHA001")
    parser.add_argument("--name", required=True, help="Key label shown in the back office")
    parser.add_argument(
        "--permission",
        action="append",
        default=None,
        help="Scope to grant (repeatable), e.g. collections:write",
    )
    parser.add_argument("--expires-in-days", type=int, default=None, help="Optional key lifetime")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        captive = await captives_repo.get_captive_by_code(session, args.captive_code.strip().upper())
        if captive is None:
            raise ValueError(f"Unknown cell captive code {args.captive_code}")
        api_key, captive, raw_key = await issue_api_key(
            session,
            cell_captive_id=captive.id,
            key_name=args.name,
            permissions=args.permission,
            expires_in_days=args.expires_in_days,
        )

    print("API key created:")
    print(f"  key_id: {api_key.id}")
    print(f"  cell_captive: {captive.code}")
    print(f"  permissions: {', '.join(api_key.permissions)}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
