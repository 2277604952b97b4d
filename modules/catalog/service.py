"""
Catalog Service
================
Read-only lookups used for price snapshots and cart pricing.
"""

from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from modules.catalog.models import Product, ProductVariant


class CatalogService:

    def get_product(self, db: Session, product_id: int) -> Optional[Product]:
        return db.query(Product).filter(Product.id == product_id).first()

    def get_variant(self, db: Session, variant_id: int) -> Optional[ProductVariant]:
        return db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()

    def resolve(
        self, db: Session, product_id: int, variant_id: Optional[int] = None
    ) -> Tuple[Optional[Product], Optional[ProductVariant]]:
        """
        Look up a product and (optionally) one of its variants.
        A variant that belongs to a different product resolves to None.
        """
        product = self.get_product(db, product_id)
        if not product or variant_id is None:
            return product, None
        variant = self.get_variant(db, variant_id)
        if variant and variant.product_id != product.id:
            return product, None
        return product, variant

    def products_by_id(self, db: Session, product_ids: Iterable[int]) -> Dict[int, Product]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        return {p.id: p for p in db.query(Product).filter(Product.id.in_(ids)).all()}

    def variants_by_id(self, db: Session, variant_ids: Iterable[int]) -> Dict[int, ProductVariant]:
        ids = [v for v in set(variant_ids) if v is not None]
        if not ids:
            return {}
        return {v.id: v for v in db.query(ProductVariant).filter(ProductVariant.id.in_(ids)).all()}


# Singleton
catalog_service = CatalogService()
