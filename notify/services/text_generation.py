"""
Gemini text-generation client used to draft notification bodies.
"""

from typing import Any, Dict, List, Optional

from .exceptions import ProviderError
from .http_client import ProviderClient

SYSTEM_INSTRUCTION = (
    "Você é a 'Notify IA', uma assistente jurídica. Redija em português brasileiro formal, "
    "com correção gramatical e validade jurídica. Não use Markdown."
)


def build_prompt(
    recipient: str,
    subject: str,
    facts: str,
    area: str = "",
    species: str = "",
    tone: str = "formal",
    attachment_count: int = 0,
    current_date: str = "",
) -> str:
    lines = [
        "TAREFA: Redigir uma Notificação Extrajudicial completa.",
        f"ÁREA DO DIREITO: {area}" if area else "",
        f"ESPÉCIE DOCUMENTAL: {species}" if species else "",
        f"DATA DE EMISSÃO: {current_date}" if current_date else "",
        f"Destinatário: {recipient}",
        f"Assunto: {subject}",
        f"Tom de voz: {tone}",
        "FATOS:",
        facts,
    ]
    if attachment_count:
        lines.append(f"O remetente anexou {attachment_count} arquivos probatórios; cite a existência dos anexos.")
    lines.append(
        "Estrutura: cabeçalho, preâmbulo, dos fatos, do direito, dos pedidos, das consequências, fechamento."
    )
    return "\n".join(line for line in lines if line)


class GeminiClient(ProviderClient):
    provider = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        **kwargs,
    ):
        self.api_key = api_key
        self.model = model
        super().__init__(base_url, headers={"x-goog-api-key": api_key or ""}, **kwargs)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def generate(self, prompt: str, attachments: Optional[List[Dict[str, Any]]] = None) -> str:
        """
        Generate text from a prompt plus optional inline attachments.

        Attachments use the ``{"inlineData": {"mimeType": ..., "data": <base64>}}`` part shape.

        Raises:
            ProviderError: when the call fails or returns no text
        """
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        parts.extend(a for a in attachments or [] if isinstance(a, dict) and "inlineData" in a)

        body = self.request(
            "POST",
            f"/models/{self.model}:generateContent",
            "generate",
            json={
                "contents": [{"role": "user", "parts": parts}],
                "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
                "generationConfig": {"temperature": 0.3},
            },
        )

        try:
            candidate_parts = body["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise ProviderError(self.provider, "response contained no candidates")
        text = "".join(part.get("text", "") for part in candidate_parts if isinstance(part, dict)).strip()
        if not text:
            raise ProviderError(self.provider, "response contained no text")
        return text
