"""SendGrid email client."""

import html
import re
from typing import Optional

from .http_client import ProviderClient

SENDGRID_SEND_PATH = "/mail/send"


def html_to_text(content: str) -> str:
    """Plain-text alternative of an HTML body."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", content, flags=re.DOTALL | re.I)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.I)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text).strip()
    return html.unescape(text)


class SendGridClient(ProviderClient):
    provider = "sendgrid"

    def __init__(self, api_key: str, from_email: str, base_url: str = "https://api.sendgrid.com/v3", **kwargs):
        self.api_key = api_key
        self.from_email = from_email
        super().__init__(base_url, headers={"Authorization": f"Bearer {api_key}"}, **kwargs)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_email)

    def send(self, to: str, subject: str, html_body: str, notification_id: Optional[str] = None) -> None:
        """
        Send one email.

        ``notification_id`` travels as a custom arg so delivery events posted
        back to the tracking webhook carry it.
        """
        personalization = {"to": [{"email": to}]}
        if notification_id:
            personalization["custom_args"] = {"notificationId": notification_id}

        payload = {
            "personalizations": [personalization],
            "from": {"email": self.from_email, "name": "Notify"},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": html_to_text(html_body)},
                {"type": "text/html", "value": html_body},
            ],
            "tracking_settings": {"open_tracking": {"enable": True}, "click_tracking": {"enable": True}},
        }
        self.request("POST", SENDGRID_SEND_PATH, "send_email", json=payload)
