"""Flask extensions shared by the application and its services."""

import smtplib

from flask import current_app
from flask_mail import Connection, Mail
from flask_wtf.csrf import CSRFProtect


class TimeoutConnection(Connection):
    """A Flask-Mail connection whose SMTP socket times out in every phase.

    The timeout covers the TCP connect, the server greeting, STARTTLS and
    login as well as the send itself.
    """

    def __init__(self, mail, timeout=None):
        """Initialize the connection."""
        super().__init__(mail)
        self.timeout = timeout

    def configure_host(self):
        """Open and authenticate the SMTP session."""
        options = {"timeout": self.timeout} if self.timeout else {}
        if self.mail.use_ssl:
            host = smtplib.SMTP_SSL(self.mail.server, self.mail.port, **options)
        else:
            host = smtplib.SMTP(self.mail.server, self.mail.port, **options)

        host.set_debuglevel(int(self.mail.debug))

        if self.mail.use_tls:
            host.starttls()
        if self.mail.username and self.mail.password:
            host.login(self.mail.username, self.mail.password)

        return host


class TimeoutMail(Mail):
    """Flask-Mail with a per-connection timeout."""

    def connect(self, timeout=None):
        """Open a connection to the configured mail server."""
        app = getattr(self, "app", None) or current_app
        try:
            return TimeoutConnection(app.extensions["mail"], timeout)
        except KeyError as e:
            raise RuntimeError(
                "The current application was not configured with Flask-Mail"
            ) from e


mail = TimeoutMail()
csrf = CSRFProtect()

__all__ = ["csrf", "mail"]
