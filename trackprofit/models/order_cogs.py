"""
Order COGS snapshot models

An OrderCOGS row freezes the cost of goods for an order at the moment it was
first observed. Rows are never updated after insert.
"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from trackprofit.models.base import Base


class OrderCOGS(Base):
    __tablename__ = "order_cogs"
    __table_args__ = (
        UniqueConstraint("shop", "order_id", name="uq_order_cogs_shop_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop = Column(String, index=True, nullable=False)
    order_id = Column(String, nullable=False)
    order_name = Column(String, nullable=True)

    total_revenue = Column(Numeric(12, 2), nullable=False, default=0)
    total_cost = Column(Numeric(12, 2), nullable=False, default=0)
    profit = Column(Numeric(12, 2), nullable=False, default=0)

    # Storefront order creation time; drives day attribution in the ledger
    created_at = Column(DateTime, index=True, nullable=False, default=datetime.utcnow)
    confirmed_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "shop": self.shop,
            "orderId": self.order_id,
            "orderName": self.order_name,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "totalRevenue": float(self.total_revenue or 0),
            "totalCost": float(self.total_cost or 0),
            "profit": float(self.profit or 0),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_cogs_id = Column(Integer, ForeignKey("order_cogs.id", ondelete="CASCADE"), index=True, nullable=False)

    product_id = Column(String, index=True, nullable=True)
    variant_id = Column(String, nullable=True)
    title = Column(String, nullable=True)

    quantity = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    total_cost = Column(Numeric(12, 2), nullable=False, default=0)
    total_revenue = Column(Numeric(12, 2), nullable=False, default=0)
    profit = Column(Numeric(12, 2), nullable=False, default=0)

    order = relationship("OrderCOGS", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "title": self.title,
            "quantity": self.quantity,
            "unitCost": float(self.unit_cost or 0),
            "price": float(self.price or 0),
            "totalCost": float(self.total_cost or 0),
            "totalRevenue": float(self.total_revenue or 0),
            "profit": float(self.profit or 0),
        }
