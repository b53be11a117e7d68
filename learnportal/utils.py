"""Utility functions for the application."""

from __future__ import annotations

import re
import smtplib
from typing import Any, Optional

from email_validator import EmailNotValidError, validate_email
from flask import current_app, render_template
from flask_mail import Message

from .core.constants import DEFAULT_MAIL_TIMEOUT, SMTP_AUTH_ERROR_CODE
from .errors import ValidationError
from .extensions import mail

EMAIL_SEPARATORS = re.compile(r"[,;\s]+")


class EmailError(Exception):
    """Base class for email errors."""

    pass


class EmailConfigurationError(EmailError):
    """Raised when the mail transport has no usable credentials."""

    pass


class EmailAuthenticationError(EmailError):
    """Raised when the SMTP server rejects the sender credentials."""

    pass


class EmailConnectionError(EmailError):
    """Raised when the SMTP server cannot be reached."""

    pass


class EmailTimeoutError(EmailConnectionError):
    """Raised when the SMTP server does not answer in time."""

    pass


class EmailSendError(EmailError):
    """Raised when a message could not be delivered to the transport."""

    pass


class InvalidRecipientError(ValidationError):
    """Raised when a recipient address is syntactically invalid."""

    def __init__(self, address, reason="Invalid email address."):
        """Initialize the error."""
        super().__init__(f"{reason} ({address})")
        self.address = address


# Failures that affect every recipient of a batch, not just one.
SYSTEMIC_EMAIL_ERRORS = (EmailConfigurationError, EmailAuthenticationError)


def normalize_email(address: str) -> str:
    """Validate an address and return its normalized, lower-cased form.

    Raises:
        InvalidRecipientError: If the address is not syntactically valid.
    """
    address = (address or "").strip()
    if not address:
        raise InvalidRecipientError(address, "Email address is required.")
    try:
        valid = validate_email(address, check_deliverability=False)
    except EmailNotValidError as e:
        raise InvalidRecipientError(address, str(e)) from e
    return valid.normalized.lower()


def is_valid_email(address: str) -> bool:
    """Return True if the address passes the syntactic check."""
    try:
        normalize_email(address)
    except InvalidRecipientError:
        return False
    return True


def parse_email_list(raw: str) -> list[str]:
    """Split a free-form list of addresses on commas, semicolons or whitespace."""
    return [part for part in EMAIL_SEPARATORS.split(raw or "") if part]


class EmailDispatcher:
    """Send single templated messages through Flask-Mail.

    Every call to :meth:`send` makes exactly one delivery attempt. Retrying
    and pacing are left to the caller.
    """

    def __init__(
        self,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = DEFAULT_MAIL_TIMEOUT,
        suppress: bool = False,
        transport: Any = None,
    ) -> None:
        """Initialize the dispatcher."""
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout
        self.suppress = suppress
        self.transport = transport if transport is not None else mail

    @classmethod
    def from_app(cls, app: Any) -> EmailDispatcher:
        """Build a dispatcher from the Flask configuration."""
        config = app.config
        return cls(
            sender=config["MAIL_DEFAULT_SENDER"],
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            timeout=config.get("MAIL_TIMEOUT", DEFAULT_MAIL_TIMEOUT),
            suppress=bool(config.get("MAIL_SUPPRESS_SEND", app.testing)),
        )

    def ensure_configured(self) -> None:
        """Fail fast when the transport cannot possibly authenticate.

        Raises:
            EmailConfigurationError: If sender credentials are missing.
        """
        if self.suppress:
            return
        if not self.username or not self.password:
            raise EmailConfigurationError(
                "Mail credentials are not configured. "
                "Set MAIL_USERNAME and MAIL_PASSWORD."
            )

    def send(self, to: str, subject: str, html: str, text: str) -> str:
        """Send one message and return the message id assigned to it.

        Raises:
            InvalidRecipientError: If ``to`` is malformed. No transport call
                is made in that case.
            EmailError: One of its subclasses if sending fails.
        """
        recipient = normalize_email(to)
        self.ensure_configured()
        msg = Message(
            subject,
            recipients=[recipient],
            html=html,
            body=text,
            sender=self.sender,
        )
        try:
            with self.transport.connect(timeout=self.timeout) as conn:
                conn.send(msg)
        except smtplib.SMTPAuthenticationError as e:
            if e.smtp_code == SMTP_AUTH_ERROR_CODE:
                raise EmailAuthenticationError(
                    "Authentication failed. Google requires you to use an App "
                    "Password. Please verify your MAIL_USERNAME and "
                    "MAIL_PASSWORD settings."
                ) from e
            raise EmailAuthenticationError(f"SMTP Authentication failed: {e}") from e
        except TimeoutError as e:
            raise EmailTimeoutError(
                f"Mail server timed out after {self.timeout}s: {e}"
            ) from e
        except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as e:
            # smtplib reports a read timeout as a dropped connection.
            if isinstance(e.__context__, TimeoutError):
                raise EmailTimeoutError(
                    f"Mail server timed out after {self.timeout}s: {e}"
                ) from e
            raise EmailConnectionError(f"Could not connect to mail server: {e}") from e
        except smtplib.SMTPException as e:
            raise EmailSendError(f"Failed to send email: {e}") from e
        except OSError as e:
            raise EmailConnectionError(f"Could not connect to mail server: {e}") from e
        except Exception as e:
            raise EmailSendError(f"Failed to send email: {e}") from e

        current_app.logger.info(f"Email '{subject}' sent to {recipient}")
        return msg.msgId

    def send_template(self, to: str, subject: str, template: str, **kwargs: Any) -> str:
        """Render ``email/<template>.html`` and ``.txt`` and send them."""
        html = render_template(f"email/{template}.html", **kwargs)
        text = render_template(f"email/{template}.txt", **kwargs)
        return self.send(to, subject, html, text)


def get_dispatcher() -> EmailDispatcher:
    """Return a dispatcher configured for the current application."""
    return EmailDispatcher.from_app(current_app)


def in_app_context(func: Any) -> Any:
    """Wrap ``func`` so it runs inside the current app's context.

    Batch work may run on pool threads, which do not inherit Flask's
    context.
    """
    app = current_app._get_current_object()

    def wrapper(*args: Any, **kwargs: Any) -> Any:
        with app.app_context():
            return func(*args, **kwargs)

    return wrapper
