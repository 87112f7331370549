import logging
from datetime import datetime
from typing import List, Optional

from shared.utils import (
    Settings, NotFoundException, BusinessRuleException, ForbiddenException, UpstreamException
)
from shared.security_config import slugify

from marketplace.cache import TTLCache
from marketplace.integrations import NotificationHub, ImageHost
from marketplace.listing import (
    matches_search, in_range, filter_documents, sort_documents, paginate, fetch_window
)
from marketplace.models import ProductDB, CategoryDB
from marketplace.store import Datastore, DuplicateError

logger = logging.getLogger("marketplace.catalog")

SEARCH_FIELDS = ("name", "description", "brand", "sku")
SORT_FIELDS = ("created_at", "price", "name", "stock", "average_rating", "review_count")
INCREASE = "increase"
DECREASE = "decrease"


class CatalogService:
    def __init__(self, db: Datastore, config: Settings, cache: Optional[TTLCache] = None,
                 hub: Optional[NotificationHub] = None, images: Optional[ImageHost] = None):
        self.products = db.collection("products")
        self.categories = db.collection("categories")
        self.config = config
        self.cache = cache or TTLCache(ttl=config.LISTING_CACHE_TTL)
        self.hub = hub
        self.images = images

    async def create_indexes(self):
        await self.products.create_index("category_id")
        await self.products.create_index("vendor_id")
        await self.products.create_index("is_active")
        await self.categories.create_index("slug", unique=True)

    def invalidate(self):
        self.cache.invalidate("products")

    # --- Categories ---

    async def create_category(self, data) -> dict:
        slug = data.slug or slugify(data.name)
        if await self.categories.find_one_by("slug", slug):
            raise BusinessRuleException("Category slug already exists")
        category = CategoryDB(name=data.name, slug=slug, description=data.description)
        try:
            return await self.categories.create(category.dict(exclude={"id"}))
        except DuplicateError:
            raise BusinessRuleException("Category slug already exists")

    async def list_categories(self, include_inactive: bool = False) -> List[dict]:
        if include_inactive:
            docs = await self.categories.list_all()
        else:
            docs = await self.categories.list_by_equality("is_active", True)
        return sort_documents(docs, "name", "asc")

    async def get_category(self, category_id: str) -> dict:
        category = await self.categories.get_by_id(category_id)
        if not category:
            raise NotFoundException("Category not found")
        return category

    async def update_category(self, category_id: str, data) -> dict:
        await self.get_category(category_id)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if "name" in patch:
            patch["slug"] = slugify(patch["name"])
        try:
            updated = await self.categories.update(category_id, patch)
        except DuplicateError:
            raise BusinessRuleException("Category slug already exists")
        self.invalidate()
        return updated

    async def delete_category(self, category_id: str):
        await self.get_category(category_id)
        if await self.products.count("category_id", category_id):
            raise BusinessRuleException("Category still has products")
        await self.categories.delete(category_id)

    # --- Products ---

    async def create_product(self, data, vendor_id: Optional[str] = None) -> dict:
        if data.category_id:
            await self.get_category(data.category_id)
        fields = data.dict()
        fields["vendor_id"] = vendor_id or fields.get("vendor_id")
        product = ProductDB(**fields)
        created = await self.products.create(product.dict(exclude={"id"}))
        self.invalidate()
        logger.info(f"Product {created['id']} created", extra={"product_id": created["id"]})
        return created

    async def get_product(self, product_id: str, include_inactive: bool = False) -> dict:
        product = await self.products.get_by_id(product_id)
        if not product or (not include_inactive and not product.get("is_active", True)):
            raise NotFoundException("Product not found")
        return product

    def check_owner(self, product: dict, vendor_id: Optional[str]):
        if vendor_id is not None and product.get("vendor_id") != vendor_id:
            raise ForbiddenException("Not authorized to modify this product")

    async def update_product(self, product_id: str, data, vendor_id: Optional[str] = None) -> dict:
        product = await self.get_product(product_id, include_inactive=True)
        self.check_owner(product, vendor_id)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if patch.get("category_id"):
            await self.get_category(patch["category_id"])
        updated = await self.products.update(product_id, patch)
        self.invalidate()
        if "stock" in patch and patch["stock"] != product.get("stock"):
            self._stock_changed(updated)
        return updated

    async def delete_product(self, product_id: str, vendor_id: Optional[str] = None):
        product = await self.get_product(product_id, include_inactive=True)
        self.check_owner(product, vendor_id)
        await self.products.delete(product_id)
        self.invalidate()
        if self.images:
            for image in product.get("images") or []:
                await self.images.delete(image.get("public_id"))
        logger.info(f"Product {product_id} deleted", extra={"product_id": product_id})

    async def add_image(self, product_id: str, content: bytes, filename: str,
                        vendor_id: Optional[str] = None) -> dict:
        product = await self.get_product(product_id, include_inactive=True)
        self.check_owner(product, vendor_id)
        if not self.images:
            raise UpstreamException("Image host is not configured")
        image = await self.images.upload(content, filename)
        updated = await self.products.mutate(
            product_id, lambda doc: {"images": (doc.get("images") or []) + [image]},
            not_found="Product not found"
        )
        self.invalidate()
        return updated

    async def set_rating(self, product_id: str, average: float, count: int):
        await self.products.update(product_id, {"average_rating": average, "review_count": count})
        self.invalidate()

    # --- Stock ---

    def _stock_changed(self, product: dict):
        if self.hub:
            self.hub.emit("stock:changed", {"product_id": product["id"], "stock": product.get("stock", 0)})

    async def update_stock(self, product_id: str, quantity: int, operation: str = DECREASE) -> dict:
        """Adjust stock by |quantity|, clamping at zero."""
        delta = abs(int(quantity or 0))
        change = delta if operation == INCREASE else -delta

        def apply(product):
            current = product.get("stock")
            current = current if isinstance(current, int) else 0
            new_stock = max(0, current + change)
            return {"stock": new_stock} if new_stock != current else {}

        updated = await self.products.mutate(product_id, apply, not_found="Product not found")
        self.invalidate()
        self._stock_changed(updated)
        return updated

    async def reserve_stock(self, product_id: str, quantity: int) -> dict:
        """Checkout decrement: fails instead of clamping when stock is short."""

        def apply(product):
            current = product.get("stock") or 0
            if not product.get("is_active", True):
                raise BusinessRuleException(f"Product '{product.get('name')}' is not available")
            if current < quantity:
                raise BusinessRuleException(f"Insufficient stock for '{product.get('name')}'")
            return {"stock": current - quantity}

        updated = await self.products.mutate(product_id, apply, not_found="Product not found")
        self.invalidate()
        self._stock_changed(updated)
        return updated

    async def release_stock(self, product_id: str, quantity: int) -> dict:
        return await self.update_stock(product_id, quantity, INCREASE)

    # --- Listing ---

    async def list_products(self, page: int = 1, limit: int = 20, category_id: Optional[str] = None,
                            vendor_id: Optional[str] = None, min_price: Optional[float] = None,
                            max_price: Optional[float] = None, in_stock: Optional[bool] = None,
                            search: Optional[str] = None, featured: Optional[bool] = None,
                            sort_by: str = "created_at", sort_order: str = "desc",
                            include_inactive: bool = False) -> dict:
        key = self.cache.make_key(
            "products", page=page, limit=limit, category_id=category_id, vendor_id=vendor_id,
            min_price=min_price, max_price=max_price, in_stock=in_stock, search=search,
            featured=featured, sort_by=sort_by, sort_order=sort_order, include_inactive=include_inactive
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        # One equality predicate goes to the store; everything else is applied here
        window = fetch_window(page, limit, self.config.MAX_LISTING_FETCH)
        if category_id:
            docs = await self.products.list_by_equality("category_id", category_id, limit=window)
            if vendor_id:
                docs = [d for d in docs if d.get("vendor_id") == vendor_id]
        elif vendor_id:
            docs = await self.products.list_by_equality("vendor_id", vendor_id, limit=window)
        else:
            docs = await self.products.list_by_equality(limit=window)

        predicates = [
            lambda d: in_range(d.get("price"), min_price, max_price),
            lambda d: matches_search(d, search, SEARCH_FIELDS),
        ]
        if not include_inactive:
            predicates.append(lambda d: d.get("is_active", True))
        if in_stock is not None:
            predicates.append(lambda d: ((d.get("stock") or 0) > 0) == in_stock)
        if featured is not None:
            predicates.append(lambda d: bool(d.get("is_featured")) == featured)

        docs = filter_documents(docs, *predicates)
        result = paginate(sort_documents(docs, sort_by, sort_order), page, limit)
        self.cache.set(key, result)
        return result

    async def featured_products(self, limit: int = 10) -> List[dict]:
        page = await self.list_products(page=1, limit=limit, featured=True)
        return page["items"]

    async def related_products(self, product_id: str, limit: int = 6) -> List[dict]:
        product = await self.get_product(product_id)

        def score(doc):
            return (2 if doc.get("category_id") == product.get("category_id") else 0) + \
                (1 if product.get("brand") and doc.get("brand") == product.get("brand") else 0)

        docs = await self.products.list_by_equality(limit=self.config.MAX_LISTING_FETCH)
        candidates = [
            d for d in docs
            if d["id"] != product_id and d.get("is_active", True) and score(d) > 0
        ]
        candidates.sort(key=score, reverse=True)
        return candidates[:limit]

    async def low_stock(self, threshold: Optional[int] = None) -> List[dict]:
        threshold = self.config.LOW_STOCK_THRESHOLD if threshold is None else threshold
        docs = await self.products.list_by_equality("is_active", True)
        return sort_documents([d for d in docs if (d.get("stock") or 0) <= threshold], "stock", "asc")

    async def product_stats(self) -> dict:
        docs = await self.products.list_all()
        active = [d for d in docs if d.get("is_active", True)]
        prices = [d.get("price") or 0 for d in active]
        return {
            "total": len(docs),
            "active": len(active),
            "inactive": len(docs) - len(active),
            "featured": sum(1 for d in active if d.get("is_featured")),
            "out_of_stock": sum(1 for d in active if (d.get("stock") or 0) <= 0),
            "low_stock": sum(1 for d in active if 0 < (d.get("stock") or 0) <= self.config.LOW_STOCK_THRESHOLD),
            "average_price": round(sum(prices) / len(prices), 2) if prices else 0.0,
            "inventory_value": round(sum((d.get("price") or 0) * (d.get("stock") or 0) for d in active), 2),
            "generated_at": datetime.utcnow(),
        }
