"""Business registry lookup: Belgian KBO/CBE enterprise data.

Used only by the optional COMPANY_EXISTS / COMPANY_NAME audit checks. The
registry is treated as unreliable: any transport error, timeout or
unexpected payload surfaces as ``RegistryError`` and the auditor degrades
the checks to INCOMPLETE.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from autopilot.core.config import settings

logger = structlog.get_logger()


class RegistryError(Exception):
    """The registry could not answer (unreachable, timeout, bad payload)."""


class RegistryEntity(BaseModel):
    model_config = ConfigDict(frozen=True)

    vat_number: str
    legal_name: str
    status: str | None = None
    address: str | None = None


class RegistryLookup(ABC):
    """Abstract base class for business-registry clients."""

    @abstractmethod
    async def search_by_vat(self, vat_number: str) -> RegistryEntity | None:
        """Return the registered entity, or None when the number is unknown."""
        ...


def normalize_enterprise_number(vat_number: str) -> str | None:
    """'BE 0123.456.789' -> '0123456789'; None if it is not a Belgian number."""
    cleaned = re.sub(r"[\s.\-]", "", vat_number).upper()
    if cleaned.startswith("BE"):
        cleaned = cleaned[2:]
    if not cleaned.isdigit():
        return None
    if len(cleaned) == 9:
        cleaned = "0" + cleaned
    return cleaned if len(cleaned) == 10 else None


class CbeRegistryClient(RegistryLookup):
    """Looks up Belgian enterprises through the CBE open-data API."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.registry_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.registry_api_key
        self.timeout = timeout or settings.registry_timeout_seconds
        self._transport = transport

    async def search_by_vat(self, vat_number: str) -> RegistryEntity | None:
        number = normalize_enterprise_number(vat_number)
        if number is None:
            logger.info("Registry: not a Belgian enterprise number", vat_number=vat_number)
            raise RegistryError(f"{vat_number} is outside Belgian registry coverage")

        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport,
            ) as client:
                resp = await client.get(
                    f"{self.base_url}/company/{number}", headers=headers,
                )
                if resp.status_code == 404:
                    logger.info("Registry: enterprise not found", enterprise_number=number)
                    return None
                resp.raise_for_status()
                payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Registry: lookup failed", enterprise_number=number, error=str(e))
            raise RegistryError(f"Registry lookup failed for {number}: {e}") from e

        data = payload.get("data", payload) if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise RegistryError(f"Registry returned an unexpected payload for {number}")
        name = data.get("denomination") or data.get("name")
        if not name:
            raise RegistryError(f"Registry returned no name for {number}")

        entity = RegistryEntity(
            vat_number=f"BE{number}",
            legal_name=name,
            status=data.get("status"),
            address=_format_address(data.get("address")),
        )
        logger.info("Registry: enterprise found", enterprise_number=number, legal_name=entity.legal_name)
        return entity


def _format_address(address: dict | str | None) -> str | None:
    if address is None or isinstance(address, str):
        return address
    parts = [
        " ".join(p for p in (address.get("street"), address.get("street_number")) if p),
        " ".join(p for p in (address.get("post_code"), address.get("city")) if p),
    ]
    joined = ", ".join(p for p in parts if p)
    return joined or None
