"""Z-API (WhatsApp) messaging client."""

from typing import Optional

from .exceptions import ProviderError
from .http_client import ProviderClient

DEFAULT_DOCUMENT_NAME = "Notificacao_Extrajudicial.pdf"


class ZApiClient(ProviderClient):
    provider = "zapi"

    def __init__(
        self,
        instance_id: str,
        instance_token: str,
        client_token: str = "",
        base_url: str = "https://api.z-api.io",
        **kwargs,
    ):
        self.instance_id = instance_id
        self.instance_token = instance_token
        headers = {"Client-Token": client_token} if client_token else None
        instance_url = f"{base_url.rstrip('/')}/instances/{instance_id}/token/{instance_token}"
        super().__init__(instance_url, headers=headers, **kwargs)

    @property
    def configured(self) -> bool:
        return bool(self.instance_id and self.instance_token)

    def send_document(self, phone: str, document_url: str, caption: str, file_name: Optional[str] = None) -> str:
        """Send a PDF by URL with a caption. Returns the provider message id."""
        body = self.request(
            "POST",
            "/send-document/pdf",
            "send_document",
            json={
                "phone": phone,
                "document": document_url,
                "fileName": file_name or DEFAULT_DOCUMENT_NAME,
                "caption": caption,
            },
        )
        return self._message_id(body, "send_document")

    def send_text(self, phone: str, message: str) -> str:
        body = self.request("POST", "/send-text", "send_text", json={"phone": phone, "message": message})
        return self._message_id(body, "send_text")

    def _message_id(self, body, operation: str) -> str:
        if not isinstance(body, dict):
            raise ProviderError(self.provider, f"{operation} returned an unexpected body")
        message_id = body.get("messageId") or body.get("id") or body.get("zaapId")
        if not message_id:
            raise ProviderError(self.provider, f"{operation} returned no message id")
        return str(message_id)
