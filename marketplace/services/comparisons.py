from typing import List, Optional

from shared.utils import NotFoundException, BusinessRuleException, ForbiddenException

from marketplace.listing import sort_documents
from marketplace.models import ComparisonDB
from marketplace.services.catalog import CatalogService
from marketplace.store import Datastore

MIN_PRODUCTS = 2
MAX_PRODUCTS = 4


class ComparisonService:
    def __init__(self, db: Datastore, catalog: CatalogService):
        self.comparisons = db.collection("comparisons")
        self.catalog = catalog

    async def create_indexes(self):
        await self.comparisons.create_index("user_id")

    async def create(self, user_id: str, product_ids: List[str], title: Optional[str] = None) -> dict:
        unique_ids = list(dict.fromkeys(product_ids))
        if not MIN_PRODUCTS <= len(unique_ids) <= MAX_PRODUCTS:
            raise BusinessRuleException(f"A comparison needs {MIN_PRODUCTS} to {MAX_PRODUCTS} distinct products")
        for product_id in unique_ids:
            await self.catalog.get_product(product_id)
        comparison = ComparisonDB(
            user_id=user_id,
            title=title or f"Comparison of {len(unique_ids)} products",
            product_ids=unique_ids
        )
        return await self.comparisons.create(comparison.dict(exclude={"id"}))

    async def _owned(self, comparison_id: str, user_id: str) -> dict:
        comparison = await self.comparisons.get_by_id(comparison_id)
        if not comparison:
            raise NotFoundException("Comparison not found")
        if comparison["user_id"] != user_id:
            raise ForbiddenException("Not authorized to access this comparison")
        return comparison

    async def list_for_user(self, user_id: str) -> List[dict]:
        return sort_documents(await self.comparisons.list_by_equality("user_id", user_id), "created_at", "desc")

    async def get_with_products(self, comparison_id: str, user_id: str) -> dict:
        await self._owned(comparison_id, user_id)
        comparison = await self.comparisons.mutate(
            comparison_id, lambda doc: {"view_count": (doc.get("view_count") or 0) + 1},
            not_found="Comparison not found"
        )
        products = []
        for product_id in comparison["product_ids"]:
            product = await self.catalog.products.get_by_id(product_id)
            # Deleted products drop out of the view
            if product:
                products.append(product)
        comparison["products"] = products
        return comparison

    async def add_product(self, comparison_id: str, user_id: str, product_id: str) -> dict:
        await self._owned(comparison_id, user_id)
        await self.catalog.get_product(product_id)

        def apply(doc):
            ids = doc["product_ids"]
            if product_id in ids:
                raise BusinessRuleException("Product is already in this comparison")
            if len(ids) >= MAX_PRODUCTS:
                raise BusinessRuleException(f"A comparison holds at most {MAX_PRODUCTS} products")
            return {"product_ids": ids + [product_id]}

        return await self.comparisons.mutate(comparison_id, apply, not_found="Comparison not found")

    async def remove_product(self, comparison_id: str, user_id: str, product_id: str) -> dict:
        await self._owned(comparison_id, user_id)

        def apply(doc):
            ids = doc["product_ids"]
            if product_id not in ids:
                raise NotFoundException("Product is not in this comparison")
            if len(ids) <= MIN_PRODUCTS:
                raise BusinessRuleException(f"A comparison must have at least {MIN_PRODUCTS} products")
            return {"product_ids": [i for i in ids if i != product_id]}

        return await self.comparisons.mutate(comparison_id, apply, not_found="Comparison not found")

    async def delete(self, comparison_id: str, user_id: str):
        await self._owned(comparison_id, user_id)
        await self.comparisons.delete(comparison_id)
