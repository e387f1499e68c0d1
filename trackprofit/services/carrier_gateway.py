"""
Carrier Gateway

Creates shipments with locally generated tracking ids, pushes them to the
carrier and mirrors the carrier's lifecycle back onto the local rows.

Lifecycle (carrier-driven, statusId / label):
  1 En Préparation -> 2 Expédiée -> 3 En Route -> 4 Arrivée à Wilaya
  -> 5 Livrée (deliveryFee applies) | 6 Retournée (cancelFee applies)
  7 En Attente may appear between any non-terminal states.
"""
import random
import re
import string
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from trackprofit.errors import (
    Conflict,
    InvalidInput,
    NotFound,
    TrackProfitError,
    TransientCarrierError,
    TransientError,
)
from trackprofit.models.base import store_unavailable
from trackprofit.models.shipment import (
    DELIVERY_TYPES,
    PACKAGE_TYPES,
    STATUS_LABELS,
    STATUS_PREPARING,
    Shipment,
    is_delivered,
    is_returned,
)
from trackprofit.services.credential_service import CredentialService
from trackprofit.utils.dates import DateWindow, parse_timestamp
from trackprofit.utils.logger import log
from trackprofit.utils.money import ZERO, to_decimal, to_int

BASE36_ALPHABET = string.digits + string.ascii_lowercase
PHONE_PATTERN = re.compile(r"^\d{9,14}$")
MAX_WILAYA_ID = 58
TRACKING_ATTEMPTS = 5

REQUIRED_FIELDS = (
    "client",
    "primaryPhone",
    "address",
    "wilayaId",
    "commune",
    "total",
    "productDescription",
    "confirmed",
)


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_tracking() -> str:
    """``ZR`` + base36 millisecond timestamp + 3 random base36 chars."""
    suffix = "".join(random.choice(BASE36_ALPHABET) for _ in range(3))
    return f"ZR{to_base36(_now_ms())}{suffix}".upper()


def generate_external_id() -> str:
    return to_base36(_now_ms()).upper()


def _clean_phone(value) -> str:
    return re.sub(r"[\s\-]", "", str(value or "")).lstrip("+")


@dataclass
class ShipmentRequest:
    client: str
    primary_phone: str
    address: str
    wilaya_id: int
    commune: str
    total: Decimal
    product_description: str
    confirmed: bool
    secondary_phone: Optional[str] = None
    wilaya: Optional[str] = None
    note: Optional[str] = None
    delivery_type: int = 0
    package_type: int = 0
    order_id: Optional[str] = None
    total_cost: Optional[Decimal] = None
    total_revenue: Optional[Decimal] = None
    profit: Optional[Decimal] = None
    delivery_fee: Decimal = ZERO
    cancel_fee: Decimal = ZERO
    source: str = "Shopify"


def _optional_money(fields: Dict[str, Any], name: str) -> Optional[Decimal]:
    value = fields.get(name)
    if value is None or value == "":
        return None
    amount = to_decimal(value, default=None)
    if amount is None or amount < 0:
        raise InvalidInput(f"{name} must be a non-negative number", field=name)
    return amount


def _signed_money(fields: Dict[str, Any], name: str) -> Optional[Decimal]:
    value = fields.get(name)
    if value is None or value == "":
        return None
    amount = to_decimal(value, default=None)
    if amount is None:
        raise InvalidInput(f"{name} must be a number", field=name)
    return amount


def validate_shipment_fields(fields: Dict[str, Any]) -> ShipmentRequest:
    """Check the shipment form and coerce it into a ShipmentRequest."""
    for name in REQUIRED_FIELDS:
        value = fields.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidInput(f"{name} is required", field=name)

    primary = _clean_phone(fields["primaryPhone"])
    if not PHONE_PATTERN.match(primary):
        raise InvalidInput("primaryPhone must contain 9 to 14 digits", field="primaryPhone")
    secondary = _clean_phone(fields.get("secondaryPhone")) or None
    if secondary and not PHONE_PATTERN.match(secondary):
        raise InvalidInput("secondaryPhone must contain 9 to 14 digits", field="secondaryPhone")

    wilaya_id = to_int(fields["wilayaId"], default=-1)
    if not 1 <= wilaya_id <= MAX_WILAYA_ID:
        raise InvalidInput(f"wilayaId must be between 1 and {MAX_WILAYA_ID}", field="wilayaId")

    total = _optional_money(fields, "total")
    if total is None:
        raise InvalidInput("total must be a non-negative number", field="total")

    delivery_type = to_int(fields.get("deliveryType", 0), default=-1)
    if delivery_type not in DELIVERY_TYPES:
        raise InvalidInput("deliveryType must be 0 (home) or 1 (stop desk)", field="deliveryType")
    package_type = to_int(fields.get("packageType", 0), default=-1)
    if package_type not in PACKAGE_TYPES:
        raise InvalidInput("packageType must be 0, 1 or 2", field="packageType")

    confirmed = fields["confirmed"]
    if isinstance(confirmed, str):
        confirmed = confirmed.strip().lower() in ("1", "true", "yes")

    return ShipmentRequest(
        client=str(fields["client"]).strip(),
        primary_phone=primary,
        secondary_phone=secondary,
        address=str(fields["address"]).strip(),
        wilaya_id=wilaya_id,
        wilaya=(fields.get("wilaya") or "").strip() or None,
        commune=str(fields["commune"]).strip(),
        total=total,
        product_description=str(fields["productDescription"]).strip(),
        confirmed=bool(confirmed),
        note=(fields.get("note") or "").strip() or None,
        delivery_type=delivery_type,
        package_type=package_type,
        order_id=str(fields["orderId"]).strip() if fields.get("orderId") else None,
        total_cost=_optional_money(fields, "totalCost"),
        total_revenue=_optional_money(fields, "totalRevenue"),
        profit=_signed_money(fields, "profit"),
        delivery_fee=_optional_money(fields, "deliveryFee") or ZERO,
        cancel_fee=_optional_money(fields, "cancelFee") or ZERO,
    )


def _money_text(value: Decimal) -> str:
    return format(value.normalize(), "f")


def build_parcel(request: ShipmentRequest, tracking: str, external_id: str) -> Dict[str, str]:
    """Carrier creation payload; every value is a string."""
    return {
        "Tracking": tracking,
        "TypeLivraison": str(request.delivery_type),
        "TypeColis": str(request.package_type),
        "Confrimee": "1" if request.confirmed else "0",
        "Client": request.client,
        "MobileA": request.primary_phone,
        "MobileB": request.secondary_phone or "",
        "Adresse": request.address,
        "IDWilaya": str(request.wilaya_id),
        "Commune": request.commune,
        "Total": _money_text(request.total),
        "Note": request.note or "",
        "TProduit": request.product_description,
        "id_Externe": external_id,
        "Source": request.source,
    }


def apply_carrier_entry(shipment: Shipment, entry: Dict[str, Any]):
    """Replace carrier-owned fields on ``shipment`` with the carrier's view."""
    status_id = to_int(entry.get("IDSituation"), default=shipment.status_id or STATUS_PREPARING)
    shipment.status_id = status_id
    shipment.status = (entry.get("Situation") or STATUS_LABELS.get(status_id) or shipment.status or "").strip()
    shipment.delivery_fee = to_decimal(entry.get("Tarif_Livrée"))
    shipment.cancel_fee = to_decimal(entry.get("Tarif_Annuler"))
    shipment.updated_at = parse_timestamp(entry.get("DateH_Action")) or datetime.utcnow()

    created_at = parse_timestamp(entry.get("Date_Creation")) or parse_timestamp(entry.get("DateA"))
    if created_at is not None:
        shipment.created_at = created_at
    elif shipment.created_at is None:
        shipment.created_at = datetime.utcnow()

    if entry.get("Client"):
        shipment.client = entry["Client"]
    if entry.get("MobileA"):
        shipment.mobile_a = str(entry["MobileA"])
    if entry.get("MobileB") is not None:
        shipment.mobile_b = str(entry["MobileB"]) or None
    if entry.get("Adresse"):
        shipment.address = entry["Adresse"]
    if entry.get("IDWilaya") not in (None, ""):
        shipment.wilaya_id = to_int(entry["IDWilaya"], default=shipment.wilaya_id or 0)
    if entry.get("Wilaya"):
        shipment.wilaya = entry["Wilaya"]
    if entry.get("Commune"):
        shipment.commune = entry["Commune"]
    if entry.get("Total") not in (None, ""):
        shipment.total = to_decimal(entry["Total"])
    if entry.get("Note") is not None:
        shipment.note = entry["Note"] or None
    if entry.get("TProduit"):
        shipment.product_description = entry["TProduit"]
    if entry.get("TypeLivraison") not in (None, ""):
        shipment.delivery_type = to_int(entry["TypeLivraison"])
    if entry.get("TypeColis") not in (None, ""):
        shipment.package_type = to_int(entry["TypeColis"])


class CarrierGateway:
    """Shipment creation and status mirroring for one store session."""

    def __init__(self, db: Session, credentials: Optional[CredentialService] = None):
        self.db = db
        self.credentials = credentials or CredentialService(db)

    def _tracking_taken(self, shop: str, tracking: str) -> bool:
        return (
            self.db.query(Shipment.id)
            .filter(Shipment.shop == shop, Shipment.tracking == tracking)
            .first()
            is not None
        )

    def _new_tracking(self, shop: str) -> str:
        for _ in range(TRACKING_ATTEMPTS):
            tracking = generate_tracking()
            if not self._tracking_taken(shop, tracking):
                return tracking
            log.warning(f"Tracking collision for {shop}: {tracking}, regenerating")
        raise Conflict("Could not generate a unique tracking id", field="tracking")

    async def _wilaya_name(self, shop: str, wilaya_id: int) -> str:
        try:
            entries = await self.credentials.get_tariff(shop)
        except TrackProfitError as e:
            log.warning(f"Tariff unavailable while naming wilaya {wilaya_id}: {e}")
            return ""
        for entry in entries:
            if entry.wilaya_id == wilaya_id:
                return entry.name
        log.warning(f"Wilaya {wilaya_id} not found in tariff for {shop}")
        return ""

    async def create_shipment(self, shop: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate, submit to the carrier, then persist.

        The row is written only after the carrier accepts the parcel. Nothing
        between the carrier call and the write may fail on provider state.
        """
        request = validate_shipment_fields(fields)
        connector = self.credentials.carrier_connector(shop)
        wilaya = request.wilaya or await self._wilaya_name(shop, request.wilaya_id)

        tracking = self._new_tracking(shop)
        external_id = generate_external_id()
        await connector.create_parcel(build_parcel(request, tracking, external_id))

        now = datetime.utcnow()
        shipment = Shipment(
            shop=shop,
            tracking=tracking,
            external_id=external_id,
            order_id=request.order_id,
            client=request.client,
            mobile_a=request.primary_phone,
            mobile_b=request.secondary_phone,
            address=request.address,
            wilaya_id=request.wilaya_id,
            wilaya=wilaya,
            commune=request.commune,
            product_description=request.product_description,
            note=request.note,
            delivery_type=request.delivery_type,
            package_type=request.package_type,
            confirmed=1 if request.confirmed else 0,
            status_id=STATUS_PREPARING,
            status=STATUS_LABELS[STATUS_PREPARING],
            total=request.total,
            delivery_fee=request.delivery_fee,
            cancel_fee=request.cancel_fee,
            total_cost=request.total_cost,
            total_revenue=request.total_revenue,
            profit=request.profit,
            created_at=now,
            updated_at=now,
        )
        try:
            self.db.add(shipment)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict(f"Shipment {tracking} already exists", field="tracking")
        except OperationalError as e:
            self.db.rollback()
            raise store_unavailable(e)

        self.db.refresh(shipment)
        log.info(f"Created shipment {tracking} for {shop} (order={request.order_id})")
        return {"tracking": tracking, "shipment": shipment}

    async def refresh(self, shop: str, trackings: Optional[List[str]] = None) -> List[Shipment]:
        """
        Pull the carrier's latest state for the given trackings (all local
        shipments when empty) and upsert each returned entry in order.
        """
        connector = self.credentials.carrier_connector(shop)
        wanted = [t.strip() for t in trackings or [] if t and t.strip()]
        if not wanted:
            wanted = [
                row.tracking
                for row in self.db.query(Shipment.tracking).filter(Shipment.shop == shop).all()
            ]
        if not wanted:
            return []

        try:
            entries = await connector.get_statuses(wanted)
        except TransientError as e:
            raise TransientCarrierError(f"Carrier status refresh failed: {e}", provider="carrier")

        existing = {
            row.tracking: row
            for row in self.db.query(Shipment)
            .filter(Shipment.shop == shop, Shipment.tracking.in_(wanted))
            .all()
        }
        requested = set(wanted)
        updated: List[Shipment] = []
        for entry in entries:
            tracking = str(entry.get("Tracking")).strip()
            if tracking not in requested:
                continue
            shipment = existing.get(tracking)
            if shipment is None:
                # Known to the carrier but never stored locally
                shipment = Shipment(
                    shop=shop,
                    tracking=tracking,
                    external_id=generate_external_id(),
                    client="",
                    mobile_a="",
                    address="",
                    wilaya_id=0,
                    commune="",
                    product_description="",
                )
                self.db.add(shipment)
                existing[tracking] = shipment
            apply_carrier_entry(shipment, entry)
            if shipment not in updated:
                updated.append(shipment)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise Conflict(f"Concurrent shipment insert during refresh: {e.orig}", field="tracking")
        except OperationalError as e:
            self.db.rollback()
            raise store_unavailable(e)

        log.info(f"Refreshed {len(updated)}/{len(wanted)} shipments for {shop}")
        return updated

    async def tariff(self, shop: str, force_refresh: bool = False):
        return await self.credentials.get_tariff(shop, force_refresh=force_refresh)

    # ── Reads ────────────────────────────────────────────

    def get_shipment(self, shop: str, tracking: str) -> Shipment:
        shipment = (
            self.db.query(Shipment)
            .filter(Shipment.shop == shop, Shipment.tracking == tracking)
            .first()
        )
        if shipment is None:
            raise NotFound(f"Shipment {tracking} not found", field="tracking")
        return shipment

    def list_shipments(
        self,
        shop: str,
        status_id: Optional[int] = None,
        window: Optional[DateWindow] = None,
        limit: int = 100,
    ) -> List[Shipment]:
        query = self.db.query(Shipment).filter(Shipment.shop == shop)
        if status_id is not None:
            query = query.filter(Shipment.status_id == status_id)
        if window is not None:
            query = query.filter(
                Shipment.created_at >= window.start_at,
                Shipment.created_at <= window.end_at,
            )
        return query.order_by(Shipment.created_at.desc(), Shipment.id.desc()).limit(limit).all()

    def get_stats(self, shop: str) -> Dict[str, Any]:
        shipments = self.db.query(Shipment).filter(Shipment.shop == shop).all()
        by_status: Dict[str, int] = {}
        delivered_revenue = ZERO
        delivery_fees = ZERO
        cancel_fees = ZERO
        delivered = 0
        returned = 0
        for shipment in shipments:
            label = STATUS_LABELS.get(shipment.status_id, shipment.status)
            by_status[label] = by_status.get(label, 0) + 1
            if is_delivered(shipment.status_id):
                delivered += 1
                delivered_revenue += to_decimal(shipment.total)
                delivery_fees += to_decimal(shipment.delivery_fee)
            elif is_returned(shipment.status_id, shipment.status):
                returned += 1
                cancel_fees += to_decimal(shipment.cancel_fee)
        return {
            "total": len(shipments),
            "delivered": delivered,
            "returned": returned,
            "inProgress": len(shipments) - delivered - returned,
            "byStatus": by_status,
            "deliveredRevenue": float(delivered_revenue),
            "deliveryFees": float(delivery_fees),
            "cancelFees": float(cancel_fees),
        }
