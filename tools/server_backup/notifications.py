"""Notification channels for backup reports."""

import smtplib
import subprocess
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Iterable, List

import requests

from shared.logger import get_logger

from .errors import ConfigurationError

logger = get_logger(__name__)

DEFAULT_SUBJECT = "Backup results"
MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


class Notifier:
    """Base class of notification channels."""

    def __init__(self, params: Dict[str, Any]):
        self.params = params

    def notify(self, report, formatted) -> None:
        raise NotImplementedError


class EmailNotifier(Notifier):
    """Send the HTML and text report by SMTP."""

    def notify(self, report, formatted) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.params.get("subject", DEFAULT_SUBJECT)
        msg["From"] = self.params["from"]
        msg["To"] = self.params["to"]
        msg.attach(MIMEText(formatted.text, "plain"))
        msg.attach(MIMEText(formatted.html, "html"))

        smtp_server = self.params.get("smtp_server", "localhost")
        smtp_port = self.params.get("smtp_port", 587)
        username = self.params.get("username")
        password = self.params.get("password")

        with smtplib.SMTP(smtp_server, smtp_port) as server:
            if username and password:
                server.starttls()
                server.login(username, password)
            server.send_message(msg)

        logger.info(f"Sent backup report to {self.params['to']}")


class MailjetNotifier(Notifier):
    """Send the HTML report through the Mailjet send API."""

    def notify(self, report, formatted) -> None:
        recipient = self.params["to"]
        if isinstance(recipient, str):
            recipient = {"Email": recipient}
        sender = self.params["from"]
        if isinstance(sender, str):
            sender = {"Email": sender}

        payload = {
            "Messages": [
                {
                    "From": sender,
                    "To": [recipient],
                    "Subject": self.params.get("subject", DEFAULT_SUBJECT),
                    "TextPart": formatted.text,
                    "HTMLPart": formatted.html,
                }
            ]
        }
        response = requests.post(
            MAILJET_SEND_URL,
            json=payload,
            auth=(self.params["key"], self.params["secret"]),
            timeout=30,
        )
        response.raise_for_status()
        logger.info("Sent backup report through Mailjet")


class NativeNotifier(Notifier):
    """Show a desktop notification with notify-send."""

    def notify(self, report, formatted) -> None:
        messages = self.params.get("messages", {})
        message = messages.get("failed" if report.errors else "success") or {}
        if isinstance(message, str):
            message = {"message": message}

        title = message.get("title", "Backup failed" if report.errors else "Backup done")
        args = ["notify-send", title]
        if message.get("message"):
            args.append(message["message"])
        subprocess.run(args, check=True)


NOTIFIERS = {
    "email": EmailNotifier,
    "mailjet": MailjetNotifier,
    "native": NativeNotifier,
}


def build_notifiers(configs: Iterable) -> List[Notifier]:
    """
    Instantiate the notifiers of a configuration.

    Args:
        configs: NotificationConfig entries

    Returns:
        List of notifiers

    Raises:
        ConfigurationError: If a type tag is unknown
    """
    notifiers = []
    for config in configs:
        cls = NOTIFIERS.get(config.type)
        if cls is None:
            raise ConfigurationError(f"Unknown notification type: {config.type!r}")
        notifiers.append(cls(dict(config.params)))
    return notifiers
