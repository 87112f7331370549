from typing import List, Optional

from shared.utils import NotFoundException, BusinessRuleException, ForbiddenException
from shared.security_config import slugify

from marketplace.listing import matches_search, filter_documents, sort_documents, paginate
from marketplace.models import VendorDB
from marketplace.store import Datastore, DuplicateError


class VendorService:
    def __init__(self, db: Datastore):
        self.vendors = db.collection("vendors")
        self.products = db.collection("products")

    async def create_indexes(self):
        await self.vendors.create_index("slug", unique=True)
        await self.vendors.create_index("user_id")

    async def create_vendor(self, data) -> dict:
        slug = data.slug or slugify(data.name)
        if await self.vendors.find_one_by("slug", slug):
            raise BusinessRuleException("Vendor slug already exists")
        fields = data.dict()
        fields["slug"] = slug
        vendor = VendorDB(**fields)
        try:
            return await self.vendors.create(vendor.dict(exclude={"id"}))
        except DuplicateError:
            raise BusinessRuleException("Vendor slug already exists")

    async def get_vendor(self, vendor_id: str) -> dict:
        vendor = await self.vendors.get_by_id(vendor_id)
        if not vendor:
            raise NotFoundException("Vendor not found")
        return vendor

    async def get_vendor_for_user(self, user_id: str) -> Optional[dict]:
        return await self.vendors.find_one_by("user_id", user_id)

    async def require_vendor_for_user(self, user_id: str) -> dict:
        vendor = await self.get_vendor_for_user(user_id)
        if not vendor or not vendor.get("is_active", True):
            raise ForbiddenException("No active vendor profile for this account")
        return vendor

    async def list_vendors(self, page: int = 1, limit: int = 20, search: Optional[str] = None,
                           include_inactive: bool = False) -> dict:
        docs = await self.vendors.list_all()
        predicates = [lambda d: matches_search(d, search, ("name", "description", "slug"))]
        if not include_inactive:
            predicates.append(lambda d: d.get("is_active", True))
        return paginate(sort_documents(filter_documents(docs, *predicates), "name", "asc"), page, limit)

    async def update_vendor(self, vendor_id: str, data) -> dict:
        await self.get_vendor(vendor_id)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if "name" in patch:
            patch["slug"] = slugify(patch["name"])
        try:
            return await self.vendors.update(vendor_id, patch)
        except DuplicateError:
            raise BusinessRuleException("Vendor slug already exists")

    async def delete_vendor(self, vendor_id: str):
        await self.get_vendor(vendor_id)
        if await self.products.count("vendor_id", vendor_id):
            raise BusinessRuleException("Vendor still has products")
        await self.vendors.delete(vendor_id)

    async def vendor_products(self, vendor_id: str) -> List[dict]:
        await self.get_vendor(vendor_id)
        docs = await self.products.list_by_equality("vendor_id", vendor_id)
        return [d for d in docs if d.get("is_active", True)]
