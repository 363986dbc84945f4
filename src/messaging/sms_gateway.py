from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "SMS service not configured"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


class SMSGateway(ABC):
    name: str = "sms"

    @abstractmethod
    def send(self, to: str, body: str) -> DeliveryResult:
        """
        Blocking send. Never raises for delivery problems; inspect ``success``.
        """
        raise NotImplementedError


class TwilioGateway(SMSGateway):
    name = "twilio"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_s: float = 15.0,
    ):
        self.account_sid = account_sid.strip()
        self.auth_token = auth_token.strip()
        self.from_number = from_number.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send(self, to: str, body: str) -> DeliveryResult:
        if not self.configured:
            logger.error("Twilio configuration missing")
            return DeliveryResult(success=False, error=NOT_CONFIGURED)

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": to, "From": self.from_number, "Body": body}

        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                r = client.post(url, data=data, auth=(self.account_sid, self.auth_token))
                r.raise_for_status()
                payload = r.json()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:200]
            logger.error(f"SMS send to {to} rejected ({e.response.status_code}): {detail}")
            return DeliveryResult(success=False, status="failed", error=f"HTTP {e.response.status_code}: {detail}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"SMS send to {to} failed: {e}")
            return DeliveryResult(success=False, status="failed", error=str(e))

        return DeliveryResult(
            success=True,
            message_id=payload.get("sid"),
            status=payload.get("status") or "sent",
        )
