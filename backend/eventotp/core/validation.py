import re

from email_validator import EmailNotValidError, validate_email

from eventotp.core.errors import ValidationError

CODE_LENGTH = 6
_CODE_RE = re.compile(r"[0-9]{%d}" % CODE_LENGTH)


def normalize_email(email: str) -> str:
    """Trim and lower-case an address; raise ValidationError if it is malformed."""
    email = (email or "").strip()
    if not email:
        raise ValidationError("Email is required.")
    try:
        info = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}") from e
    return info.normalized.lower()


def normalize_code(code: str) -> str:
    """Accept '123456' or '123 456' / '123-456'; anything else is rejected."""
    code = re.sub(r"[\s-]", "", code or "")
    if not _CODE_RE.fullmatch(code):
        raise ValidationError(f"Please enter the {CODE_LENGTH}-digit code from your email.")
    return code
