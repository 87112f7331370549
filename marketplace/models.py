from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field

# Documents are written as plain dicts via .dict(exclude={"id"}); the store
# assigns ids and versions.

class AddressDB(BaseModel):
    id: str
    type: str = "both"  # shipping, billing, both
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    is_default: bool = False

class UserDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    email: str
    password_hash: str
    role: str = "user"  # user, vendor, admin
    full_name: str
    phone: Optional[str] = None
    is_active: bool = True
    addresses: List[AddressDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class VendorDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    slug: str
    description: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CategoryDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class ProductImage(BaseModel):
    public_id: Optional[str] = None
    url: str

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    sku: Optional[str] = None
    brand: Optional[str] = None
    price: float
    original_price: Optional[float] = None
    stock: int = 0
    category_id: Optional[str] = None
    vendor_id: Optional[str] = None
    images: List[ProductImage] = []
    is_active: bool = True
    is_featured: bool = False
    average_rating: float = 0.0
    review_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CartItemDB(BaseModel):
    product_id: str
    quantity: int
    price: float  # Snapshot at add time
    name: str = ""
    image: str = ""
    added_at: datetime = Field(default_factory=datetime.utcnow)

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    subtotal: float = 0.0
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    coupon_discount: float = 0.0
    total: float = 0.0
    total_items: int = 0
    coupon_code: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class CouponUsage(BaseModel):
    user_id: str
    order_id: Optional[str] = None
    discount_amount: float
    used_at: datetime = Field(default_factory=datetime.utcnow)

class CouponDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    code: str
    name: str
    description: Optional[str] = None
    discount_type: str  # percentage, fixed, free_shipping
    discount_value: float
    max_uses: Optional[int] = None  # None means unlimited
    used_count: int = 0
    max_uses_per_user: int = 1
    valid_from: datetime
    valid_until: datetime
    minimum_order_amount: float = 0.0
    maximum_discount_amount: Optional[float] = None
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    applicable_users: List[str] = []
    user_groups: List[str] = []
    is_active: bool = True
    is_public: bool = True
    usage_history: List[CouponUsage] = []
    total_discount_given: float = 0.0
    total_orders: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class GiftCardUsage(BaseModel):
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: float
    used_at: datetime = Field(default_factory=datetime.utcnow)

class GiftCardDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    code: str
    amount: float
    balance: float
    type: str = "digital"  # digital, physical
    status: str = "active"  # active, used, expired, cancelled
    issued_by: str
    issued_to: Optional[str] = None
    issued_to_email: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    used_by: Optional[str] = None
    usage_history: List[GiftCardUsage] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class OrderItemDB(BaseModel):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int
    price: float
    total: float
    vendor_id: Optional[str] = None

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    order_number: str
    user_id: str
    items: List[OrderItemDB]
    subtotal: float
    tax: float = 0.0
    shipping: float = 0.0
    discount: float = 0.0
    gift_card_amount: float = 0.0
    total: float
    amount_due: float = 0.0
    coupon_code: Optional[str] = None
    gift_card_code: Optional[str] = None
    shipping_address: Optional[dict] = None
    billing_address: Optional[dict] = None
    payment_method: Optional[str] = None
    shipping_method: Optional[str] = None
    customer_notes: Optional[str] = None
    status: str = "pending"  # pending, confirmed, processing, shipped, delivered, cancelled, refunded
    payment_status: str = "pending"  # pending, paid, failed, refunded
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class ReviewDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    product_id: str
    order_id: str
    rating: int
    title: Optional[str] = None
    comment: str
    is_approved: bool = False
    is_moderated: bool = False
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    flagged_by: List[dict] = []
    helpful_votes: int = 0
    total_votes: int = 0
    voters: List[str] = []
    is_verified_purchase: bool = True
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    moderation_notes: Optional[str] = None
    # user_id:product_id:order_id, unique
    review_key: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class WishlistItemDB(BaseModel):
    product_id: str
    name: str = ""
    price: float = 0.0
    image: str = ""
    added_at: datetime = Field(default_factory=datetime.utcnow)

class WishlistDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[WishlistItemDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class ComparisonDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    title: str
    product_ids: List[str]
    view_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class PackageItemDB(BaseModel):
    product_id: str
    quantity: int = 1

class PackageDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    image: str = ""
    items: List[PackageItemDB]
    package_price: float
    original_total: float = 0.0
    discount_percentage: float = 0.0
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
