"""
Client per la funzione serverless di invio email
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Il contenuto viene generato da template Jinja2 e inviato come JSON
alla funzione esterna. La consegna è responsabilità del provider:
qui si riporta solo l'esito HTTP della chiamata.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx
from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from careledger.core.config import settings
from careledger.core.exceptions import BusinessValidationError

logger = logging.getLogger(__name__)

# Path alla cartella templates
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")

_recipients_adapter = TypeAdapter(List[EmailStr])


@dataclass(frozen=True)
class DispatchResult:
    """Esito della chiamata alla funzione di invio."""

    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class EmailDispatchClient:
    """
    Invia email tramite la funzione serverless configurata.

    Args:
        base_url: URL base delle funzioni (default: settings.email_function_url)
        api_key: Chiave di autorizzazione (default: settings.email_function_key)
        timeout: Timeout in secondi
        transport: Transport httpx alternativo (usato nei test)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url if base_url is not None else settings.email_function_url
        self.api_key = api_key if api_key is not None else settings.email_function_key
        self.timeout = timeout if timeout is not None else settings.email_function_timeout_seconds
        self.transport = transport
        self.env = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template_name: str, context: Dict[str, Any]) -> str:
        template = self.env.get_template(template_name)
        return template.render(
            app_name=settings.app_name,
            currency_symbol=settings.currency_symbol,
            **context,
        )

    async def send(
        self,
        recipients: Sequence[str],
        subject: str,
        template_name: str,
        context: Optional[Dict[str, Any]] = None,
        function_name: str = "send-notification-email",
    ) -> DispatchResult:
        """
        Genera il contenuto e lo invia alla funzione serverless.

        Args:
            recipients: Indirizzi email dei destinatari
            subject: Oggetto
            template_name: Template Jinja2 in templates/
            context: Variabili del template
            function_name: Nome della funzione da invocare

        Returns:
            DispatchResult: esito HTTP; errori di rete e risposte non 2xx
            sono riportati qui e mai sollevati

        Raises:
            BusinessValidationError: nessun destinatario o email non valida
        """
        if not recipients:
            raise BusinessValidationError("At least one email recipient is required")
        try:
            to = [str(address) for address in _recipients_adapter.validate_python(list(recipients))]
        except PydanticValidationError as e:
            raise BusinessValidationError(
                "Invalid email address",
                extra={"errors": [err["msg"] for err in e.errors()]},
            )

        if not self.base_url:
            logger.warning("Invio email '%s' saltato: funzione email non configurata", subject)
            return DispatchResult(success=False, error="Email function URL not configured")

        try:
            html = self.render(template_name, context or {})
        except TemplateError as e:
            logger.error("Errore nel template email %s: %s", template_name, e)
            return DispatchResult(success=False, error=f"Template error: {e}")

        body = {
            "to": to,
            "subject": subject,
            "html": html,
            "from_name": settings.email_from_name,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(f"/{function_name}", json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error("Errore di rete durante l'invio email '%s': %s", subject, e)
            return DispatchResult(success=False, error=str(e))

        if response.is_success:
            logger.info("Email '%s' inviata a %d destinatari", subject, len(to))
            return DispatchResult(success=True, status_code=response.status_code)

        logger.warning(
            "Invio email '%s' fallito: HTTP %s %s",
            subject, response.status_code, response.text[:200],
        )
        return DispatchResult(
            success=False,
            status_code=response.status_code,
            error=response.text[:500] or response.reason_phrase,
        )


__all__ = ["DispatchResult", "EmailDispatchClient"]
