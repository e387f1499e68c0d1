"""
ZRExpress (Procolis) carrier connector.

API structure (all JSON POST, auth via ``token`` + ``key`` headers):
  - tarification : tariff table per wilaya; also used to validate credentials
  - add_colis    : create a parcel, body ``{"Colis": [parcel]}``
  - lire         : batch status read, body ``{"Colis": [{"Tracking": ...}]}``

``lire`` answers either ``{"Colis": [...]}`` or a bare array.
"""
import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from trackprofit.config import get_settings
from trackprofit.connectors.base_connector import BaseConnector
from trackprofit.errors import AuthFailed, InvalidInput
from trackprofit.utils.logger import log
from trackprofit.utils.money import to_decimal, to_int

settings = get_settings()


@dataclass
class TariffEntry:
    wilaya_id: int
    name: str
    home_delivery_price: Decimal
    pickup_delivery_price: Decimal
    cancel_fee: Decimal

    @classmethod
    def from_carrier(cls, raw: Dict[str, Any]) -> "TariffEntry":
        return cls(
            wilaya_id=to_int(raw.get("IDWilaya")),
            name=str(raw.get("Wilaya") or "").strip(),
            home_delivery_price=to_decimal(raw.get("Domicile")),
            pickup_delivery_price=to_decimal(raw.get("Stopdesk")),
            cancel_fee=to_decimal(raw.get("Annuler")),
        )

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TariffEntry":
        return cls(
            wilaya_id=int(raw["wilayaId"]),
            name=raw.get("name") or "",
            home_delivery_price=to_decimal(raw.get("homeDeliveryPrice")),
            pickup_delivery_price=to_decimal(raw.get("pickupDeliveryPrice")),
            cancel_fee=to_decimal(raw.get("cancelFee")),
        )

    @property
    def available(self) -> bool:
        return self.home_delivery_price > 0 or self.pickup_delivery_price > 0

    def price_for(self, delivery_type: int) -> Decimal:
        return self.pickup_delivery_price if delivery_type == 1 else self.home_delivery_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wilayaId": self.wilaya_id,
            "name": self.name,
            "homeDeliveryPrice": float(self.home_delivery_price),
            "pickupDeliveryPrice": float(self.pickup_delivery_price),
            "cancelFee": float(self.cancel_fee),
        }


class ZRExpressConnector(BaseConnector):
    """Connector for the ZRExpress parcel carrier."""

    def __init__(self, token: str, key: str, base_url: Optional[str] = None):
        super().__init__("carrier")
        self.token = (token or "").strip()
        self.key = (key or "").strip()
        self.base_url = (base_url or settings.carrier_base_url).rstrip("/")
        self.REQUEST_TIMEOUT = settings.carrier_timeout_seconds

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "token": self.token,
            "key": self.key,
        }

    def _error_message(self, body: str) -> str:
        """Prefer the gateway's ``fault.faultstring`` when present."""
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            return (body or "")[:300]
        if isinstance(payload, dict) and isinstance(payload.get("fault"), dict):
            return str(payload["fault"].get("faultstring") or payload["fault"])
        return (body or "")[:300]

    async def _post(self, endpoint: str, body: Any, operation_name: str) -> Any:
        if not self.token or not self.key:
            raise AuthFailed("Carrier token and key are required", provider=self.name)
        return await self._retry_operation(
            lambda: self._request_json(
                "POST", f"{self.base_url}/{endpoint}", headers=self.headers, json_body=body
            ),
            operation_name=operation_name,
        )

    async def validate_credentials(self) -> bool:
        """Credentials are valid when tarification answers with a table."""
        data = await self._post("tarification", {}, "validate_credentials")
        if not isinstance(data, list):
            raise AuthFailed("Carrier did not accept the supplied token/key", provider=self.name)
        log.info(f"Carrier credentials validated ({len(data)} tariff rows)")
        return True

    async def get_tariff(self) -> List[TariffEntry]:
        data = await self._post("tarification", {}, "get_tariff")
        if not isinstance(data, list):
            raise InvalidInput("Unexpected tariff response from carrier", provider=self.name)
        return [TariffEntry.from_carrier(row) for row in data if isinstance(row, dict)]

    async def create_parcel(self, parcel: Dict[str, str]) -> Any:
        """Submit one parcel. All values must already be strings."""
        response = await self._post("add_colis", {"Colis": [parcel]}, "create_parcel")
        log.info(f"Carrier accepted parcel {parcel.get('Tracking')}")
        return response

    async def get_statuses(self, trackings: List[str]) -> List[Dict[str, Any]]:
        """Batch status read; entries come back in carrier order."""
        if not trackings:
            return []
        body = {"Colis": [{"Tracking": tracking} for tracking in trackings]}
        data = await self._post("lire", body, "get_statuses")
        if isinstance(data, dict) and isinstance(data.get("Colis"), list):
            entries = data["Colis"]
        elif isinstance(data, list):
            entries = data
        else:
            entries = []
        return [entry for entry in entries if isinstance(entry, dict) and entry.get("Tracking")]
