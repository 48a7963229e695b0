from typing import Any, Dict, Optional, Protocol

import httpx

from .config import settings
from .exceptions import DeliveryError
from .logging import get_logger

logger = get_logger(__name__)


class AggregateDelivery(Protocol):
    """Anything the worker pool can hand a dataValueSets payload to."""

    async def send_aggregate_data_values(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


class DHIS2Client:
    """Thin client posting data value sets to a DHIS2 instance."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: int = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: DHIS2 server root, e.g. https://play.dhis2.org/40
            username: basic auth user
            password: basic auth password
            timeout: request timeout in seconds
            transport: optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip('/')
        self.auth = (username, password)
        self.timeout = timeout
        self.transport = transport

    async def send_aggregate_data_values(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a payload to /api/dataValueSets.

        Returns:
            The import summary, always carrying a ``status`` key
            (SUCCESS, WARNING, ERROR, OK).

        Raises:
            DeliveryError: on transport failure or a non-2xx answer
        """
        url = f"{self.base_url}/api/dataValueSets"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, auth=self.auth, transport=self.transport
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Accept": "application/json",
                        "User-Agent": f"{settings.APP_NAME}/{settings.VERSION}",
                    },
                )
        except httpx.HTTPError as e:
            logger.error("DHIS2 request failed", url=url, error=str(e))
            raise DeliveryError(str(e)) from e

        body = response.text
        if response.status_code >= 300:
            # DHIS2 answers 409 with a WebMessage when the import is rejected
            logger.warning("DHIS2 rejected payload", status_code=response.status_code)
            raise DeliveryError(
                f"DHIS2 returned HTTP {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            summary = response.json()
        except ValueError:
            summary = {}
        if not isinstance(summary, dict):
            summary = {"raw": summary}

        # 2.36+ wraps the import summary in a WebMessage envelope
        status = summary.get("status")
        if isinstance(summary.get("response"), dict):
            status = summary["response"].get("status", status)

        logger.info("DHIS2 import summary received", status=status)
        summary["status"] = status or "SUCCESS"
        return summary


def build_dhis2_client() -> DHIS2Client:
    return DHIS2Client(
        base_url=settings.DHIS2_BASE_URL,
        username=settings.DHIS2_USER,
        password=settings.DHIS2_PASSWORD,
        timeout=settings.DHIS2_TIMEOUT_SECONDS,
    )
