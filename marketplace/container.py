from typing import Optional

from shared.utils import Settings

from marketplace.cache import TTLCache
from marketplace.integrations import EmailSender, ImageHost, NotificationHub
from marketplace.services.admin import AdminService
from marketplace.services.carts import CartService
from marketplace.services.catalog import CatalogService
from marketplace.services.comparisons import ComparisonService
from marketplace.services.coupons import CouponService
from marketplace.services.gift_cards import GiftCardService
from marketplace.services.orders import OrderService
from marketplace.services.packages import PackageService
from marketplace.services.reviews import ReviewService
from marketplace.services.users import UserService
from marketplace.services.vendors import VendorService
from marketplace.services.wishlists import WishlistService
from marketplace.store import Datastore


class Services:
    """Wires every service against one datastore and one set of collaborators."""

    def __init__(self, db: Datastore, config: Settings, hub: Optional[NotificationHub] = None,
                 email: Optional[EmailSender] = None, images: Optional[ImageHost] = None):
        self.db = db
        self.config = config
        self.hub = hub or NotificationHub()
        self.email = email or EmailSender(config)
        self.images = images or ImageHost(config)
        self.cache = TTLCache(ttl=config.LISTING_CACHE_TTL)

        self.users = UserService(db)
        self.vendors = VendorService(db)
        self.catalog = CatalogService(db, config, self.cache, self.hub, self.images)
        self.coupons = CouponService(db)
        self.gift_cards = GiftCardService(db)
        self.carts = CartService(db, self.coupons, config)
        self.orders = OrderService(
            db, self.catalog, self.coupons, self.gift_cards, self.carts, config,
            email=self.email, hub=self.hub
        )
        self.reviews = ReviewService(db, self.catalog)
        self.wishlists = WishlistService(db, self.catalog, self.carts)
        self.comparisons = ComparisonService(db, self.catalog)
        self.packages = PackageService(db, self.catalog, config, self.cache)
        self.admin = AdminService(db, config)

    async def create_indexes(self):
        for service in (self.users, self.vendors, self.catalog, self.coupons, self.gift_cards,
                        self.carts, self.orders, self.reviews, self.wishlists, self.comparisons,
                        self.packages):
            await service.create_indexes()
