"""
Verdant Store - Demo Seeder
=============================
Seeds a small plant catalog, an admin, a customer and sample coupons.

Usage:
    python scripts/seed.py          # Seed (skips rows that already exist)
    python scripts/seed.py --reset  # Drop all data and reseed

Seeded:
  1. Users (admin + customer)
  2. Products + variants
  3. Coupons (SAVE10, FLAT100)
"""

import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import SessionLocal, Base, engine
from modules.user.models import User
from modules.catalog.models import Product, ProductVariant, ProductStatus, StockStatus
from modules.coupon.models import Coupon, CouponRedemption, DiscountType  # noqa: F401
from modules.cart.models import Cart, CartItem  # noqa: F401
from modules.order.models import Order, OrderItem, OrderStatusLog  # noqa: F401


USERS = [
    {"email": "admin@verdant.example", "full_name": "Store Admin", "is_admin": True},
    {"email": "priya@verdant.example", "full_name": "Priya Sharma", "phone": "9876543210"},
]

PRODUCTS = [
    {
        "name": "Monstera Deliciosa", "slug": "monstera-deliciosa",
        "base_price": Decimal("799"),
        "variants": [("Small", Decimal("0")), ("Large", Decimal("400"))],
    },
    {
        "name": "Snake Plant", "slug": "snake-plant",
        "base_price": Decimal("499"), "sale_price": Decimal("449"),
        "variants": [("Ceramic pot", Decimal("150"))],
    },
    {
        "name": "Fiddle Leaf Fig", "slug": "fiddle-leaf-fig",
        "base_price": Decimal("1299"),
        "variants": [],
    },
    {
        "name": "Peace Lily", "slug": "peace-lily",
        "base_price": Decimal("349"),
        "variants": [],
    },
]

COUPONS = [
    {
        "code": "SAVE10", "description": "10% off orders of 500 or more",
        "discount_type": DiscountType.PERCENTAGE.value, "discount_value": Decimal("10"),
        "min_purchase": Decimal("500"),
    },
    {
        "code": "FLAT100", "description": "100 off orders of 999 or more",
        "discount_type": DiscountType.FIXED.value, "discount_value": Decimal("100"),
        "min_purchase": Decimal("999"), "max_uses": 100,
    },
]


def ensure_tables():
    """Create all tables if they don't exist (safe to call multiple times)."""
    print("[0/3] Ensuring all tables exist...")
    Base.metadata.create_all(bind=engine)
    print("  + All tables OK\n")


def seed():
    db = SessionLocal()
    try:
        print("=" * 50)
        print("  Verdant Store - Demo Seeder")
        print("=" * 50)

        ensure_tables()

        # ==========================================
        # 1. Users
        # ==========================================
        print("[1/3] Users")
        for data in USERS:
            existing = db.query(User).filter(User.email == data["email"]).first()
            if existing:
                print(f"  = exists: {data['email']}")
                continue
            db.add(User(**data))
            print(f"  + {data['email']}{' (admin)' if data.get('is_admin') else ''}")
        db.flush()

        # ==========================================
        # 2. Products
        # ==========================================
        print("\n[2/3] Products")
        for data in PRODUCTS:
            data = dict(data)
            variants = data.pop("variants")
            if db.query(Product).filter(Product.slug == data["slug"]).first():
                print(f"  = exists: {data['slug']}")
                continue
            product = Product(
                **data,
                status=ProductStatus.ACTIVE.value,
                stock_status=StockStatus.IN_STOCK.value,
            )
            for name, adjustment in variants:
                product.variants.append(ProductVariant(
                    name=name, price_adjustment=adjustment, stock_quantity=25,
                ))
            db.add(product)
            print(f"  + {data['name']} ({len(variants)} variants)")
        db.flush()

        # ==========================================
        # 3. Coupons
        # ==========================================
        print("\n[3/3] Coupons")
        for data in COUPONS:
            if db.query(Coupon).filter(Coupon.code == data["code"]).first():
                print(f"  = exists: {data['code']}")
                continue
            db.add(Coupon(**data, is_active=True))
            print(f"  + {data['code']}: {data['description']}")

        db.commit()

        print("\n" + "=" * 50)
        print("  Seed complete")
        print("=" * 50)
        print("  Admin    : admin@verdant.example")
        print("  Customer : priya@verdant.example")
        print("  SAVE10   : 10% off, min 500")
        print("  FLAT100  : 100 off, min 999")

    except Exception as e:
        db.rollback()
        print(f"\nSeed failed: {e}")
        raise
    finally:
        db.close()


def reset_and_seed():
    """Drop all tables and recreate + seed."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    print("All tables recreated")
    seed()


if __name__ == "__main__":
    if "--reset" in sys.argv:
        confirm = input("This will DELETE ALL DATA. Type 'yes' to confirm: ")
        if confirm.strip().lower() == "yes":
            reset_and_seed()
        else:
            print("Aborted.")
    else:
        seed()
