from __future__ import annotations

from typing import List

import structlog

from .errors import service_boundary
from .schemas import ProductOut
from .stores import ProductStore

logger = structlog.get_logger(__name__)


class ProductCatalog:
    """Products that subscriptions point at: a name and a price, nothing more."""

    def __init__(self, store: ProductStore):
        self.store = store
        self.db = getattr(store, "db", None)

    @service_boundary("product_create")
    def create(self, name: str, price: float) -> ProductOut:
        product = self.store.create(name=name, price=price)
        logger.info("product_created", product_id=product.id)
        return ProductOut.model_validate(product)

    @service_boundary("product_find_all")
    def find_all(self) -> List[ProductOut]:
        return [ProductOut.model_validate(p) for p in self.store.find_all()]
