from __future__ import annotations

import logging
from typing import Callable, Optional

from osm.domain.errors import NotFoundError, ValidationError
from osm.domain.models import CartLine, Product, ProductRef
from osm.repositories.contracts import ProductResolver
from osm.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("osm.stock")


class CatalogService:
    """Frames and lenses that can be sold. Stock itself lives in lots."""

    def __init__(self, uow_factory: Callable[..., UnitOfWork]):
        self.uow_factory = uow_factory

    def add_frame(self, reference: str, sale_price: float, brand: Optional[str] = None) -> ProductRef:
        reference = self._reference(reference)
        self._price(sale_price)
        with self.uow_factory() as uow:
            ref = ProductRef.frame(uow.catalog.add_frame(reference, (brand or "").strip() or None, float(sale_price)))
        log.info("product_added product=%s reference=%s", ref, reference)
        return ref

    def add_lens(
        self,
        reference: str,
        sale_price: float,
        lens_type: Optional[str] = None,
        refractive_index: Optional[float] = None,
    ) -> ProductRef:
        reference = self._reference(reference)
        self._price(sale_price)
        with self.uow_factory() as uow:
            ref = ProductRef.lens(
                uow.catalog.add_lens(reference, (lens_type or "").strip() or None, refractive_index, float(sale_price))
            )
        log.info("product_added product=%s reference=%s", ref, reference)
        return ref

    def resolve(self, ref: ProductRef) -> Product:
        with self.uow_factory(read_only=True) as uow:
            product = uow.catalog.get(ref)
        if not product:
            raise NotFoundError(f"Product {ref} not found.")
        return product

    def deactivate(self, ref: ProductRef) -> None:
        with self.uow_factory() as uow:
            if not uow.catalog.set_active(ref, False):
                raise NotFoundError(f"Product {ref} not found.")

    @staticmethod
    def _reference(reference: str) -> str:
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("Reference is required.")
        return reference

    @staticmethod
    def _price(sale_price: float) -> None:
        if float(sale_price) < 0:
            raise ValidationError("Sale price must be >= 0.")


class CartBuilder:
    """Builds cart lines priced from the catalog."""

    def __init__(self, resolver: ProductResolver):
        self.resolver = resolver

    def line(self, ref: ProductRef, qty: int, discount_pct: float = 0.0, vat_pct: float = 0.0) -> CartLine:
        product = self.resolver.resolve(ref)
        if not product or not product.active:
            raise ValidationError(f"Product {ref} is not available for sale.")
        return CartLine(
            product=ref,
            qty=int(qty),
            unit_price=float(product.sale_price),
            discount_pct=float(discount_pct),
            vat_pct=float(vat_pct),
        )
