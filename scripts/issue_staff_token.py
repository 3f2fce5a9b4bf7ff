from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import select

from premiumcollect.domain.models import User
from premiumcollect.persistence.db import SessionLocal
from premiumcollect.services.auth.sessions import issue_session_token


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue a back-office session token for a staff user")
    parser.add_argument("--email", required=True, help="Staff user email")
    parser.add_argument("--ttl-hours", type=int, default=None, help="Token lifetime override")
    return parser


async def _issue(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        user = (
            await session.execute(select(User).where(User.email == args.email))
        ).scalar_one_or_none()
    if user is None:
        raise ValueError(f"No staff user with email {args.email}")
    if not user.is_active:
        raise ValueError(f"Staff user {args.email} is inactive")
    token = issue_session_token(
        user_id=user.id,
        email=user.email,
        role=user.role,
        ttl_hours=args.ttl_hours,
    )
    print(f"Session token for {user.email} (role={user.role}):")
    print(f"  {token}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_issue(args))
    except Exception as exc:  # noqa: BLE001 - surface lookup failures clearly
        print(f"issue_staff_token failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
