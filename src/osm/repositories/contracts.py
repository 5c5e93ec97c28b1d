from __future__ import annotations

from typing import Optional, Protocol

from osm.domain.models import Product, ProductRef


class ProductResolver(Protocol):
    """Catalog lookup for a polymorphic product reference."""

    def resolve(self, ref: ProductRef) -> Optional[Product]: ...
