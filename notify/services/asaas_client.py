"""
Asaas payment gateway client.
"""

from typing import Any, Dict, Optional

from .http_client import ProviderClient


class AsaasClient(ProviderClient):
    provider = "asaas"

    def __init__(self, api_key: str, base_url: str = "https://www.asaas.com/api/v3", **kwargs):
        self.api_key = api_key
        super().__init__(base_url, headers={"access_token": api_key or ""}, **kwargs)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def find_customer(self, cpf_cnpj: str) -> Optional[Dict[str, Any]]:
        body = self.request("GET", "/customers", "find_customer", params={"cpfCnpj": cpf_cnpj})
        customers = body.get("data") or []
        return customers[0] if customers else None

    def create_customer(self, name: str, email: Optional[str], cpf_cnpj: Optional[str]) -> Dict[str, Any]:
        payload = {"name": name, "email": email, "cpfCnpj": cpf_cnpj, "notificationDisabled": False}
        return self.request(
            "POST", "/customers", "create_customer", json={k: v for k, v in payload.items() if v is not None}
        )

    def create_charge(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create a one-off charge; returns the gateway payment with ``id`` and ``status``."""
        return self.request("POST", "/payments", "create_charge", json=payload)

    def get_pix_qr_code(self, payment_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/payments/{payment_id}/pixQrCode", "get_pix_qr_code")

    def get_charge(self, payment_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/payments/{payment_id}", "get_charge")
