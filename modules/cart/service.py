"""
Cart Module - Service Layer
==============================
Two cart stores with one interface:

  - AnonymousCart: lines held client-side in a signed cookie token
  - PersistedCart: cart / cart_items rows owned by a signed-in user

CartService prices either store, applies coupons, and merges an anonymous
cart into the user's persisted cart at sign-in.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from config.settings import PricingConfig, pricing_config
from modules.cart.models import Cart, CartItem
from modules.catalog.models import ProductStatus
from modules.catalog.service import catalog_service
from modules.coupon.service import coupon_service
from modules.pricing.calculator import (
    AppliedCoupon, CartTotals, PricedLine, calculate_subtotal, calculate_totals,
)
from common.exceptions import CouponValidationError, NotFoundError, ValidationError
from common.helpers import money, safe_int
from common.security import create_cart_token, decode_cart_token

logger = logging.getLogger("verdant.cart")

MAX_LINE_QUANTITY = 99


@dataclass(frozen=True)
class CartLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int

    @property
    def key(self):
        return (self.product_id, self.variant_id)

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "variant_id": self.variant_id, "quantity": self.quantity}


# ==========================================
# Anonymous (cookie) store
# ==========================================

class AnonymousCart:
    is_anonymous = True

    def __init__(self, lines: Optional[List[CartLine]] = None, coupon: Optional[AppliedCoupon] = None):
        self._lines = {line.key: line for line in (lines or [])}
        self._coupon = coupon

    @classmethod
    def from_token(cls, token: Optional[str]) -> "AnonymousCart":
        """A missing, expired or tampered token starts a fresh cart."""
        if not token:
            return cls()
        payload = decode_cart_token(token)
        if payload is None:
            logger.warning("Discarding unreadable cart cookie")
            return cls()

        lines = []
        for raw in payload.get("lines") or []:
            if not isinstance(raw, dict):
                continue
            product_id = safe_int(raw.get("product_id"))
            quantity = safe_int(raw.get("quantity"))
            if not product_id or not quantity or quantity < 1:
                continue
            lines.append(CartLine(product_id, safe_int(raw.get("variant_id")), quantity))
        return cls(lines, AppliedCoupon.from_dict(payload.get("coupon")))

    def to_token(self) -> str:
        coupon = self._coupon.to_dict() if self._coupon else None
        return create_cart_token([line.to_dict() for line in self.lines], coupon)

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def add(self, product_id: int, variant_id: Optional[int], quantity: int):
        existing = self._lines.get((product_id, variant_id))
        if existing:
            quantity += existing.quantity
        self._lines[(product_id, variant_id)] = CartLine(product_id, variant_id, quantity)

    def update_quantity(self, product_id: int, variant_id: Optional[int], quantity: int):
        if quantity <= 0:
            self.remove(product_id, variant_id)
        elif (product_id, variant_id) in self._lines:
            self._lines[(product_id, variant_id)] = CartLine(product_id, variant_id, quantity)

    def remove(self, product_id: int, variant_id: Optional[int]):
        self._lines.pop((product_id, variant_id), None)

    def clear(self):
        self._lines = {}
        self._coupon = None

    @property
    def applied_coupon(self) -> Optional[AppliedCoupon]:
        return self._coupon

    def set_coupon(self, coupon: Optional[AppliedCoupon]):
        self._coupon = coupon


# ==========================================
# Persisted (database) store
# ==========================================

class PersistedCart:
    is_anonymous = False

    def __init__(self, db: Session, cart: Cart):
        self.db = db
        self.cart = cart

    @property
    def user_id(self) -> int:
        return self.cart.user_id

    @property
    def lines(self) -> List[CartLine]:
        return [CartLine(it.product_id, it.variant_id, it.quantity) for it in self.cart.items]

    def _find(self, product_id: int, variant_id: Optional[int]) -> Optional[CartItem]:
        for item in self.cart.items:
            if item.product_id == product_id and item.variant_id == variant_id:
                return item
        return None

    def add(self, product_id: int, variant_id: Optional[int], quantity: int):
        item = self._find(product_id, variant_id)
        if item:
            item.quantity = item.quantity + quantity
        else:
            self.cart.items.append(CartItem(product_id=product_id, variant_id=variant_id, quantity=quantity))
        self.db.flush()

    def update_quantity(self, product_id: int, variant_id: Optional[int], quantity: int):
        if quantity <= 0:
            self.remove(product_id, variant_id)
            return
        item = self._find(product_id, variant_id)
        if item:
            item.quantity = quantity
            self.db.flush()

    def remove(self, product_id: int, variant_id: Optional[int]):
        item = self._find(product_id, variant_id)
        if item:
            self.cart.items.remove(item)
            self.db.flush()

    def clear(self):
        for item in list(self.cart.items):
            self.cart.items.remove(item)
        self.set_coupon(None)
        self.db.flush()

    @property
    def applied_coupon(self) -> Optional[AppliedCoupon]:
        if not self.cart.coupon_code:
            return None
        return AppliedCoupon(
            code=self.cart.coupon_code,
            discount_amount=money(self.cart.coupon_discount),
            min_purchase=money(self.cart.coupon_min_purchase),
        )

    def set_coupon(self, coupon: Optional[AppliedCoupon]):
        self.cart.coupon_code = coupon.code if coupon else None
        self.cart.coupon_discount = coupon.discount_amount if coupon else None
        self.cart.coupon_min_purchase = coupon.min_purchase if coupon else None
        self.db.flush()


# ==========================================
# Service
# ==========================================

class CartService:

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config or pricing_config()

    def get_or_create_cart(self, db: Session, user_id: int) -> Cart:
        """Get existing cart or create new one for user."""
        cart = db.query(Cart).filter(Cart.user_id == user_id).first()
        if not cart:
            cart = Cart(user_id=user_id)
            db.add(cart)
            db.flush()
        return cart

    def persisted(self, db: Session, user_id: int) -> PersistedCart:
        return PersistedCart(db, self.get_or_create_cart(db, user_id))

    def store_for(self, db: Session, user, cart_token: Optional[str]):
        """Signed-in users get their persisted cart; everyone else the cookie cart."""
        if user is not None:
            return self.persisted(db, user.id)
        return AnonymousCart.from_token(cart_token)

    # ------------------------------------------
    # Pricing
    # ------------------------------------------

    def priced_lines(self, db: Session, store) -> List[PricedLine]:
        """Join cart lines with catalog prices. Lines for missing products are skipped."""
        lines = store.lines
        products = catalog_service.products_by_id(db, [l.product_id for l in lines])
        variants = catalog_service.variants_by_id(db, [l.variant_id for l in lines])

        priced = []
        for line in lines:
            product = products.get(line.product_id)
            if not product:
                continue
            variant = variants.get(line.variant_id) if line.variant_id is not None else None
            if line.variant_id is not None and (not variant or variant.product_id != product.id):
                continue
            priced.append(PricedLine(
                product_id=product.id,
                variant_id=variant.id if variant else None,
                quantity=line.quantity,
                unit_price=money(product.unit_price),
                variant_adjustment=money(variant.price_adjustment) if variant else money(0),
                product_name=product.name,
                variant_name=variant.name if variant else None,
            ))
        return priced

    def summary(self, db: Session, store) -> CartTotals:
        return calculate_totals(self.priced_lines(db, store), store.applied_coupon, self.config)

    def to_response(self, db: Session, store) -> dict:
        totals = self.summary(db, store)
        return {
            "lines": [
                {
                    "product_id": l.product_id,
                    "variant_id": l.variant_id,
                    "product_name": l.product_name,
                    "variant_name": l.variant_name,
                    "quantity": l.quantity,
                    "unit_price": str(l.effective_unit_price),
                    "line_subtotal": str(l.line_subtotal),
                }
                for l in totals.lines
            ],
            "coupon": store.applied_coupon.to_dict() if store.applied_coupon else None,
            **totals.to_dict(),
        }

    # ------------------------------------------
    # Line operations
    # ------------------------------------------

    def add_item(self, db: Session, store, product_id: int, variant_id: Optional[int] = None, quantity: int = 1):
        if quantity < 1 or quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"Quantity must be between 1 and {MAX_LINE_QUANTITY}")

        product, variant = catalog_service.resolve(db, product_id, variant_id)
        if not product or product.status != ProductStatus.ACTIVE:
            raise NotFoundError("Product not found")
        if variant_id is not None and not variant:
            raise NotFoundError("Product variant not found")

        store.add(product_id, variant_id, quantity)
        self.refresh_coupon(db, store)

    def update_quantity(self, db: Session, store, product_id: int, variant_id: Optional[int], quantity: int):
        """Set a line's quantity; zero or less removes the line."""
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"Quantity must be between 1 and {MAX_LINE_QUANTITY}")
        store.update_quantity(product_id, variant_id, quantity)
        self.refresh_coupon(db, store)

    def remove_item(self, db: Session, store, product_id: int, variant_id: Optional[int] = None):
        store.remove(product_id, variant_id)
        self.refresh_coupon(db, store)

    def clear(self, store):
        store.clear()

    # ------------------------------------------
    # Coupon
    # ------------------------------------------

    def apply_coupon(self, db: Session, store, code: str) -> AppliedCoupon:
        """Validate against the current subtotal and store on the cart. Raises CouponValidationError."""
        subtotal = calculate_subtotal(self.priced_lines(db, store))
        applied = coupon_service.ensure_valid(db, code, subtotal)
        store.set_coupon(applied)
        return applied

    def remove_coupon(self, store):
        store.set_coupon(None)

    def refresh_coupon(self, db: Session, store) -> bool:
        """
        Re-run the applied coupon against the current subtotal so the stored
        discount always matches what checkout will compute. A coupon that no
        longer passes is dropped.

        Returns True if the coupon was dropped.
        """
        coupon = store.applied_coupon
        if not coupon:
            return False
        subtotal = calculate_subtotal(self.priced_lines(db, store))
        try:
            refreshed = coupon_service.ensure_valid(db, coupon.code, subtotal)
        except CouponValidationError as e:
            store.set_coupon(None)
            logger.info(f"Coupon {coupon.code} removed from cart ({e.reason}) at subtotal {subtotal}")
            return True
        if refreshed != coupon:
            store.set_coupon(refreshed)
        return False

    # ------------------------------------------
    # Merge (sign-in)
    # ------------------------------------------

    def merge(self, db: Session, anonymous: AnonymousCart, user_id: int) -> PersistedCart:
        """
        Fold the cookie cart into the user's persisted cart: quantities add up
        for matching lines, new lines are inserted. The anonymous cart is
        cleared; the persisted cart is authoritative afterwards.
        """
        persisted = self.persisted(db, user_id)
        for line in anonymous.lines:
            product, variant = catalog_service.resolve(db, line.product_id, line.variant_id)
            if not product or (line.variant_id is not None and not variant):
                continue
            persisted.add(line.product_id, line.variant_id, line.quantity)

        if anonymous.applied_coupon and not persisted.applied_coupon:
            persisted.set_coupon(anonymous.applied_coupon)
        self.refresh_coupon(db, persisted)

        merged = len(anonymous.lines)
        anonymous.clear()
        logger.info(f"Merged {merged} anonymous cart line(s) into cart of user #{user_id}")
        return persisted


# Singleton
cart_service = CartService()
