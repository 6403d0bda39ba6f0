"""Send OTP emails via an SMTP relay. Relay and sender come from settings, never from source."""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from eventotp.core.errors import TransportError

logger = logging.getLogger(__name__)

# Avoid blocking the request forever if SMTP is slow or unreachable
SMTP_TIMEOUT_SECONDS = 15.0
OTP_EXPIRE_MINUTES = 10


def render_otp_email(
    code: str,
    expire_minutes: int = OTP_EXPIRE_MINUTES,
    app_name: str = "School Event Manager",
) -> MIMEMultipart:
    """Build the login verification message (plain text + HTML). Headers other than Subject are set on send."""
    subject = f"{app_name} - Login Verification Code"
    html = f"""
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #333;">{app_name}</h2>
  <p>Hello!</p>
  <p>Your verification code is:</p>
  <div style="background: #f0f0f0; padding: 20px; text-align: center; font-size: 32px; font-weight: bold; letter-spacing: 5px; margin: 20px 0; border-radius: 8px;">
    {code}
  </div>
  <p>This code will expire in {expire_minutes} minutes.</p>
  <p>If you didn't request this code, please ignore this email.</p>
  <hr style="margin: 30px 0;">
  <p style="color: #666; font-size: 12px;">{app_name}</p>
</body>
</html>
"""
    text = (
        "Hello!\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code will expire in {expire_minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email.\n\n"
        f"{app_name}"
    )

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg.attach(MIMEText(text, "plain"))
    msg.attach(MIMEText(html, "html"))
    return msg


class SMTPTransport:
    """
    Long-lived handle on the email relay. Built once at startup and shared;
    each send opens its own connection bounded by ``timeout``.
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_email: str = "",
        from_name: str = "",
        use_ssl: bool = False,
        timeout: float = SMTP_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user
        self.from_name = from_name
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "SMTPTransport":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            user=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            from_email=settings.SMTP_FROM_EMAIL,
            from_name=settings.SMTP_FROM_NAME,
            use_ssl=settings.SMTP_USE_SSL,
            timeout=settings.SMTP_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self.host and self.from_email)

    @property
    def sender(self) -> str:
        if self.from_name:
            return f"{self.from_name} <{self.from_email}>"
        return self.from_email

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            server.starttls(context=context)
        except smtplib.SMTPNotSupportedError:
            logger.warning("SMTP relay %s does not offer STARTTLS", self.host)
        except BaseException:
            server.close()
            raise
        return server

    def _require_configured(self) -> None:
        if not self.configured:
            raise TransportError("SMTP not configured (SMTP_HOST/SMTP_FROM_EMAIL).")

    def send(self, msg: MIMEMultipart, to_email: str) -> None:
        """Hand msg to the relay. Returns once the relay accepted it; raises TransportError otherwise."""
        self._require_configured()
        msg["From"] = self.sender
        msg["To"] = to_email
        try:
            with self._connect() as server:
                if self.user:
                    server.login(self.user, self.password)
                refused = server.sendmail(self.from_email, [to_email], msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.exception("SMTP login failed for %s: %s", to_email, e)
            raise TransportError("Email relay rejected the credentials.") from e
        except smtplib.SMTPException as e:
            logger.exception("SMTP relay refused message for %s: %s", to_email, e)
            raise TransportError("Email relay refused the message.") from e
        except (OSError, TimeoutError) as e:
            logger.exception("SMTP connection error (timeout or network) for %s: %s", to_email, e)
            raise TransportError("Email relay unreachable.") from e
        if refused:
            raise TransportError(f"Email relay refused recipient {to_email}.")

    def check(self) -> None:
        """Connect and authenticate without sending anything."""
        self._require_configured()
        try:
            with self._connect() as server:
                if self.user:
                    server.login(self.user, self.password)
                server.noop()
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"SMTP check failed: {e}") from e


class OTPDelivery:
    """Renders OTP messages and pushes them through a transport, retrying relay failures."""

    def __init__(
        self,
        transport: SMTPTransport,
        expire_minutes: int = OTP_EXPIRE_MINUTES,
        retries: int = 1,
        app_name: str = "School Event Manager",
    ):
        self.transport = transport
        self.expire_minutes = expire_minutes
        self.retries = retries
        self.app_name = app_name

    def deliver(self, to_email: str, code: str, retries: Optional[int] = None) -> None:
        retries = self.retries if retries is None else retries
        attempt = 0
        while True:
            attempt += 1
            msg = render_otp_email(code, self.expire_minutes, self.app_name)
            try:
                self.transport.send(msg, to_email)
            except TransportError as e:
                if attempt > retries:
                    logger.error("Giving up sending OTP to %s after %s attempt(s): %s", to_email, attempt, e)
                    raise
                logger.warning("OTP email to %s failed (attempt %s), retrying: %s", to_email, attempt, e)
                continue
            logger.info("OTP email sent to %s", to_email)
            return
