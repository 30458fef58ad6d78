import logging
import httpx
from typing import Dict, Any, Optional
from common.config import settings
from common.reminders import reminder_email_subject

logger = logging.getLogger(__name__)

class EmailAdapter:
    def __init__(self):
        self.base_url = settings.EMAIL_API_BASE.rstrip("/")
        self.token = settings.EMAIL_API_KEY
        self.sender = settings.EMAIL_FROM

    def _get_headers(self) -> Dict[str, str]:
        if not self.token:
            raise RuntimeError("EMAIL_API_KEY not configured")
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }

    async def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> Dict[str, Any]:
        """
        Sends one email through the provider's /emails endpoint.
        """
        payload: Dict[str, Any] = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        if html:
            payload["html"] = html
        async with httpx.AsyncClient(timeout=15.0) as client:
            resp = await client.post(f"{self.base_url}/emails", headers=self._get_headers(), json=payload)
            resp.raise_for_status()
            if resp.status_code == 204 or not resp.content:
                return {}
            return resp.json()

    async def send_reminder(self, to: str, title: str, description: str, local_time: str) -> Dict[str, Any]:
        body = f"{title}\n\n{description}\n\nDue: {local_time}"
        return await self.send(to, reminder_email_subject(title), body)

email_adapter = EmailAdapter()
