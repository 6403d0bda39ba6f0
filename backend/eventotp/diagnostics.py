"""
Developer diagnostics for the OTP service.

    eventotp-diagnostics smtp-check
    eventotp-diagnostics challenge someone@example.com
    eventotp-diagnostics send-test someone@example.com
"""

import argparse
import sys
from typing import List, Optional

from eventotp.core.config import Settings, settings as default_settings
from eventotp.core.errors import TransportError, ValidationError
from eventotp.services.challenges import ChallengeStore, as_utc
from eventotp.services.email import OTPDelivery, SMTPTransport

SAMPLE_CODE = "000000"


def _mask(code: str) -> str:
    return code[:1] + "*" * (len(code) - 1) if code else ""


def cmd_smtp_check(args, settings: Settings, store: ChallengeStore) -> int:
    transport = SMTPTransport.from_settings(settings)
    print(f"Relay: {settings.SMTP_HOST or '(not set)'}:{settings.SMTP_PORT}  sender: {transport.sender or '(not set)'}")
    try:
        transport.check()
    except TransportError as e:
        print(f"FAILED: {e.message}")
        return 1
    print("OK: relay accepted connection and credentials")
    return 0


def cmd_challenge(args, settings: Settings, store: ChallengeStore) -> int:
    challenge = store.latest(args.email)
    if challenge is None:
        print(f"No challenge issued for {args.email}")
        return 1
    now = store.now()
    expires_at = as_utc(challenge.expires_at)
    left = int((expires_at - now).total_seconds())
    print(f"Challenge:  {challenge.id}")
    print(f"Email:      {challenge.subject_email}")
    print(f"Status:     {challenge.status.value}")
    print(f"Code:       {_mask(challenge.code)}")
    print(f"Attempts:   {challenge.attempts_remaining} remaining")
    print(f"Created:    {as_utc(challenge.created_at).isoformat()}")
    print(f"Expires:    {expires_at.isoformat()} ({'in %ss' % left if left >= 0 else 'passed'})")
    return 0


def cmd_send_test(args, settings: Settings, store: ChallengeStore) -> int:
    delivery = OTPDelivery(
        SMTPTransport.from_settings(settings),
        expire_minutes=max(settings.OTP_TTL_SECONDS // 60, 1),
        retries=0,
        app_name=settings.APP_NAME,
    )
    try:
        delivery.deliver(args.email, SAMPLE_CODE)
    except TransportError as e:
        print(f"FAILED: {e.message}")
        return 1
    print(f"Sample code email accepted by relay for {args.email}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eventotp-diagnostics", description="OTP service diagnostics")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("smtp-check", help="connect and log in to the email relay")
    p.set_defaults(func=cmd_smtp_check)

    p = sub.add_parser("challenge", help="show the latest challenge for an email (code masked)")
    p.add_argument("email")
    p.set_defaults(func=cmd_challenge)

    p = sub.add_parser("send-test", help="send a sample code email through the relay")
    p.add_argument("email")
    p.set_defaults(func=cmd_send_test)
    return parser


def main(
    argv: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
    store: Optional[ChallengeStore] = None,
) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or default_settings
    if store is None:
        from eventotp.core.database import SessionLocal
        store = ChallengeStore(
            SessionLocal,
            ttl_seconds=settings.OTP_TTL_SECONDS,
            max_attempts=settings.OTP_MAX_ATTEMPTS,
        )
    try:
        return args.func(args, settings, store)
    except ValidationError as e:
        print(f"Invalid input: {e.message}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
