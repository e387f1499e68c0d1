"""
Carrier shipment models

Shipments are stored once the carrier accepts the parcel and are afterwards
mutated only by status refresh from the carrier.
"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, UniqueConstraint, Index
from datetime import datetime
from trackprofit.models.base import Base

STATUS_PREPARING = 1
STATUS_SHIPPED = 2
STATUS_IN_TRANSIT = 3
STATUS_ARRIVED = 4
STATUS_DELIVERED = 5
STATUS_RETURNED = 6
STATUS_WAITING = 7

# Carrier-side labels keyed by statusId
STATUS_LABELS = {
    STATUS_PREPARING: "En Préparation",
    STATUS_SHIPPED: "Expédiée",
    STATUS_IN_TRANSIT: "En Route",
    STATUS_ARRIVED: "Arrivée à Wilaya",
    STATUS_DELIVERED: "Livrée",
    STATUS_RETURNED: "Retournée",
    STATUS_WAITING: "En Attente",
}

TERMINAL_STATUSES = frozenset({STATUS_DELIVERED, STATUS_RETURNED})

RETURNED_LABEL_MARKER = "Retour"
CANCELLED_LABEL = "Annulé"

DELIVERY_HOME = 0
DELIVERY_STOP_DESK = 1
DELIVERY_TYPES = {DELIVERY_HOME: "home", DELIVERY_STOP_DESK: "stop_desk"}

PACKAGE_NORMAL = 0
PACKAGE_FRAGILE = 1
PACKAGE_LIQUID = 2
PACKAGE_TYPES = {PACKAGE_NORMAL: "normal", PACKAGE_FRAGILE: "fragile", PACKAGE_LIQUID: "liquid"}


def is_delivered(status_id) -> bool:
    return status_id == STATUS_DELIVERED


def is_returned(status_id, status_label) -> bool:
    if status_id == STATUS_RETURNED:
        return True
    label = status_label or ""
    return RETURNED_LABEL_MARKER in label or label.strip() == CANCELLED_LABEL


def status_label(status_id) -> str:
    return STATUS_LABELS.get(status_id, "Inconnu")


class Shipment(Base):
    __tablename__ = "shipments"
    __table_args__ = (
        UniqueConstraint("shop", "tracking", name="uq_shipments_shop_tracking"),
        Index("ix_shipments_shop_updated_at", "shop", "updated_at"),
        Index("ix_shipments_shop_order_id", "shop", "order_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, index=True, nullable=False)

    tracking = Column(String, nullable=False)
    external_id = Column(String, nullable=False)
    order_id = Column(String, nullable=True)

    # Recipient
    client = Column(String, nullable=False)
    mobile_a = Column(String, nullable=False)
    mobile_b = Column(String, nullable=True)
    address = Column(String, nullable=False)
    wilaya_id = Column(Integer, nullable=False)
    wilaya = Column(String, nullable=False, default="")
    commune = Column(String, nullable=False)

    product_description = Column(String, nullable=False)
    note = Column(String, nullable=True)
    delivery_type = Column(Integer, nullable=False, default=DELIVERY_HOME)
    package_type = Column(Integer, nullable=False, default=PACKAGE_NORMAL)
    confirmed = Column(Integer, nullable=False, default=1)

    # Lifecycle
    status_id = Column(Integer, nullable=False, default=STATUS_PREPARING)
    status = Column(String, nullable=False, default=STATUS_LABELS[STATUS_PREPARING])

    # Money (store currency)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    delivery_fee = Column(Numeric(12, 2), nullable=False, default=0)
    cancel_fee = Column(Numeric(12, 2), nullable=False, default=0)
    total_cost = Column(Numeric(12, 2), nullable=True)
    total_revenue = Column(Numeric(12, 2), nullable=True)
    profit = Column(Numeric(12, 2), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status_id in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        def _money(value):
            return float(value) if value is not None else None

        return {
            "tracking": self.tracking,
            "externalId": self.external_id,
            "orderId": self.order_id,
            "client": self.client,
            "mobileA": self.mobile_a,
            "mobileB": self.mobile_b,
            "address": self.address,
            "wilayaId": self.wilaya_id,
            "wilaya": self.wilaya,
            "commune": self.commune,
            "productDescription": self.product_description,
            "note": self.note,
            "deliveryType": self.delivery_type,
            "packageType": self.package_type,
            "statusId": self.status_id,
            "status": self.status,
            "total": _money(self.total),
            "deliveryFee": _money(self.delivery_fee),
            "cancelFee": _money(self.cancel_fee),
            "totalCost": _money(self.total_cost),
            "totalRevenue": _money(self.total_revenue),
            "profit": _money(self.profit),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
