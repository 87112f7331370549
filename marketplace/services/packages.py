import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from shared.utils import Settings, NotFoundException, BusinessRuleException, to_decimal, round_money

from marketplace.cache import TTLCache
from marketplace.listing import matches_search, filter_documents, sort_documents, paginate, fetch_window
from marketplace.models import PackageDB
from marketplace.services.catalog import CatalogService
from marketplace.store import Datastore

logger = logging.getLogger("marketplace.packages")


def package_discount(package_price, original_total) -> float:
    """Percentage saved against buying the items separately, clamped to 0..100."""
    price = to_decimal(package_price)
    total = to_decimal(original_total)
    if price <= 0 or total <= 0:
        return 0.0
    percentage = round_money((1 - price / total) * 100)
    return float(min(Decimal(100), max(Decimal(0), percentage)))


def product_discount(product: dict) -> float:
    original = product.get("original_price") or 0
    price = product.get("price") or 0
    if original <= 0:
        return 0.0
    return 1 - price / original


def is_running(package: dict, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    if not package.get("is_active", True):
        return False
    if package.get("starts_at") and package["starts_at"] > now:
        return False
    if package.get("ends_at") and package["ends_at"] < now:
        return False
    return True


class PackageService:
    def __init__(self, db: Datastore, catalog: CatalogService, config: Settings,
                 cache: Optional[TTLCache] = None):
        self.packages = db.collection("packages")
        self.catalog = catalog
        self.config = config
        self.cache = cache or TTLCache(ttl=config.LISTING_CACHE_TTL)

    async def create_indexes(self):
        await self.packages.create_index("is_active")

    def invalidate(self):
        self.cache.invalidate("packages")

    async def _original_total(self, items: List[dict]) -> float:
        # Items whose product no longer exists do not count towards the total
        total = Decimal(0)
        for item in items:
            product = await self.catalog.products.get_by_id(item["product_id"])
            if product and product.get("price") is not None:
                total += round_money(product["price"]) * item.get("quantity", 1)
        return float(round_money(total))

    async def create_package(self, data) -> dict:
        fields = data.dict()
        _check_window(fields.get("starts_at"), fields.get("ends_at"))
        original_total = await self._original_total(fields["items"])
        package = PackageDB(
            **fields,
            original_total=original_total,
            discount_percentage=package_discount(fields["package_price"], original_total)
        )
        created = await self.packages.create(package.dict(exclude={"id"}))
        self.invalidate()
        logger.info(f"Package {created['id']} created", extra={"package_id": created["id"]})
        return created

    async def get_package(self, package_id: str, include_inactive: bool = False) -> dict:
        package = await self.packages.get_by_id(package_id)
        if not package or (not include_inactive and not package.get("is_active", True)):
            raise NotFoundException("Package not found")
        return package

    async def update_package(self, package_id: str, data) -> dict:
        current = await self.get_package(package_id, include_inactive=True)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        _check_window(patch.get("starts_at", current.get("starts_at")), patch.get("ends_at", current.get("ends_at")))
        if "items" in patch or "package_price" in patch:
            original_total = await self._original_total(patch.get("items", current["items"]))
            patch["original_total"] = original_total
            patch["discount_percentage"] = package_discount(
                patch.get("package_price", current["package_price"]), original_total
            )
        updated = await self.packages.update(package_id, patch)
        self.invalidate()
        return updated

    async def delete_package(self, package_id: str):
        await self.get_package(package_id, include_inactive=True)
        await self.packages.delete(package_id)
        self.invalidate()

    async def list_packages(self, page: int = 1, limit: int = 20, search: Optional[str] = None,
                            is_active: Optional[bool] = None, sort_by: str = "created_at",
                            sort_order: str = "desc") -> dict:
        key = self.cache.make_key(
            "packages", page=page, limit=limit, search=search, is_active=is_active,
            sort_by=sort_by, sort_order=sort_order
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        window = fetch_window(page, limit, self.config.MAX_LISTING_FETCH)
        if is_active is None:
            docs = await self.packages.list_by_equality(limit=window)
        else:
            docs = await self.packages.list_by_equality("is_active", is_active, limit=window)
        docs = filter_documents(docs, lambda d: matches_search(d, search, ("name", "description")))
        result = paginate(sort_documents(docs, sort_by, sort_order), page, limit)
        self.cache.set(key, result)
        return result

    async def packages_and_discounts(self, limit_packages: int = 12, limit_products: int = 12) -> dict:
        """Running packages next to the products currently sold below their original price."""
        now = datetime.utcnow()
        page = await self.list_packages(page=1, limit=limit_packages, is_active=True)
        packages = [p for p in page["items"] if is_running(p, now)]

        products = await self.catalog.products.list_by_equality(
            "is_active", True, limit=self.config.MAX_LISTING_FETCH
        )
        discounted = [p for p in products if product_discount(p) > 0]
        discounted.sort(key=product_discount, reverse=True)
        return {"packages": packages, "discounted_products": discounted[:limit_products]}


def _check_window(starts_at: Optional[datetime], ends_at: Optional[datetime]):
    if starts_at and ends_at and starts_at >= ends_at:
        raise BusinessRuleException("starts_at must be before ends_at")
