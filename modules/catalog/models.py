"""
Catalog Module - Models
========================
Product and ProductVariant. Read-only from the order subsystem's point of
view: used for price lookups and name snapshots at order time.
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from config.database import Base


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    DRAFT = "draft"


class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


# ==========================================
# 📦 Product
# ==========================================

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True)
    base_price = Column(Numeric(12, 2), nullable=False)
    sale_price = Column(Numeric(12, 2), nullable=True)
    stock_status = Column(String, default=StockStatus.IN_STOCK, nullable=False)
    status = Column(String, default=ProductStatus.ACTIVE, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    variants = relationship("ProductVariant", back_populates="product", cascade="all, delete-orphan")

    @property
    def unit_price(self) -> Decimal:
        """Effective price: sale price when set, else base price."""
        return Decimal(self.sale_price) if self.sale_price else Decimal(self.base_price)

    def __repr__(self):
        return f"<Product {self.name}>"


# ==========================================
# 🌱 Product Variant (size / pot options)
# ==========================================

class ProductVariant(Base):
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    price_adjustment = Column(Numeric(12, 2), default=0, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)

    product = relationship("Product", back_populates="variants")

    __table_args__ = (
        UniqueConstraint("product_id", "name", name="uq_variant_product_name"),
    )

    def __repr__(self):
        return f"<ProductVariant {self.name}>"
