from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from shared.security_config import sanitize_input, validate_password_strength
from shared.utils import to_naive_utc

ORDER_STATUS_PATTERN = "^(pending|confirmed|processing|shipped|delivered|cancelled|refunded)$"
PAYMENT_STATUS_PATTERN = "^(pending|paid|failed|refunded)$"
ADDRESS_TYPE_PATTERN = "^(shipping|billing|both)$"

# --- Auth ---

class UserRegister(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: str = Field("user", pattern="^(user|vendor)$")
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None

    @field_validator('password')
    def password_complexity(cls, v):
        if not validate_password_strength(v):
            raise ValueError('Password must be at least 8 characters long and contain uppercase, lowercase, and numbers')
        return v

    @field_validator('full_name', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class UserLogin(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class UserResponse(BaseModel):
    id: str
    email: EmailStr
    role: str
    full_name: str
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime

# --- Profile and addresses ---

class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = None

    @field_validator('full_name', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressCreate(BaseModel):
    type: str = Field("both", pattern=ADDRESS_TYPE_PATTERN)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    company: Optional[str] = None
    address1: str = Field(..., min_length=1)
    address2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    phone: Optional[str] = None
    is_default: bool = False

    @field_validator('first_name', 'last_name', 'company', 'address1', 'address2', 'city', 'state',
                     'country', 'zip_code', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressUpdate(BaseModel):
    type: Optional[str] = Field(None, pattern=ADDRESS_TYPE_PATTERN)
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
    is_default: Optional[bool] = None

    @field_validator('first_name', 'last_name', 'company', 'address1', 'address2', 'city', 'state',
                     'country', 'zip_code', 'phone')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class AddressResponse(BaseModel):
    id: str
    type: str
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

class ProfileResponse(UserResponse):
    addresses: List[AddressResponse] = []

# --- Vendors ---

class VendorCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator('name', 'description', 'slug')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class VendorUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class VendorResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    user_id: Optional[str] = None
    logo_url: Optional[str] = None
    is_active: bool
    created_at: datetime

# --- Categories ---

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    slug: Optional[str] = None

    @field_validator('name', 'description', 'slug')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CategoryResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool = True

# --- Products ---

class ProductImageIn(BaseModel):
    public_id: Optional[str] = None
    url: str

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    sku: Optional[str] = None
    brand: Optional[str] = None
    price: float = Field(..., gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    stock: int = Field(0, ge=0)
    category_id: Optional[str] = None
    vendor_id: Optional[str] = None
    images: List[ProductImageIn] = []
    is_featured: bool = False

    @field_validator('name', 'description', 'sku', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[ProductImageIn]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None

    @field_validator('name', 'description', 'sku', 'brand')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ProductImageUpload(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    # Raw image bytes, base64 encoded
    content_base64: str = Field(..., min_length=1)

class StockUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
    operation: str = Field("decrease", pattern="^(increase|decrease)$")

class ProductResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    sku: Optional[str] = None
    brand: Optional[str] = None
    price: float
    original_price: Optional[float] = None
    stock: int
    category_id: Optional[str] = None
    vendor_id: Optional[str] = None
    images: List[ProductImageIn] = []
    is_active: bool
    is_featured: bool = False
    average_rating: float = 0.0
    review_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

# --- Cart ---

class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

class CartItemUpdate(BaseModel):
    # Zero or negative removes the line
    quantity: int

class CouponApply(BaseModel):
    code: str = Field(..., min_length=1)

class GuestCartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    price: float = Field(0, ge=0)
    name: str = ""
    image: str = ""

class GuestCartMerge(BaseModel):
    items: List[GuestCartItem] = []

class CartItemResponse(BaseModel):
    product_id: str
    quantity: int
    price: float
    name: str = ""
    image: str = ""
    added_at: Optional[datetime] = None

class CartResponse(BaseModel):
    id: str
    user_id: str
    items: List[CartItemResponse]
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total: float
    total_items: int = 0
    coupon_code: Optional[str] = None
    updated_at: Optional[datetime] = None

class CartSummary(BaseModel):
    total_items: int
    item_count: int
    has_items: bool
    subtotal: float
    tax: float
    shipping: float
    discount: float
    total: float
    coupon_code: Optional[str] = None

# --- Coupons ---

class CouponBase(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    discount_type: str = Field(..., pattern="^(percentage|fixed|free_shipping)$")
    discount_value: float = Field(..., ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: int = Field(1, ge=1)
    valid_from: datetime
    valid_until: datetime
    minimum_order_amount: float = Field(0, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, gt=0)
    applicable_products: List[str] = []
    applicable_categories: List[str] = []
    applicable_users: List[str] = []
    user_groups: List[str] = []
    is_public: bool = True

    @field_validator('valid_from', 'valid_until')
    def naive_utc(cls, v):
        return to_naive_utc(v)

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    @model_validator(mode="after")
    def check_rules(self):
        if self.valid_from >= self.valid_until:
            raise ValueError("valid_from must be before valid_until")
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        return self

class CouponCreate(CouponBase):
    code: str = Field(..., min_length=3, max_length=32, pattern="^[A-Za-z0-9_-]+$")

    @field_validator('code')
    def upper_code(cls, v):
        return v.strip().upper()

class CouponUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    discount_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    minimum_order_amount: Optional[float] = Field(None, ge=0)
    maximum_discount_amount: Optional[float] = Field(None, gt=0)
    applicable_users: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None

    @field_validator('valid_from', 'valid_until')
    def naive_utc(cls, v):
        return to_naive_utc(v)

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class CouponResponse(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    max_uses: Optional[int] = None
    used_count: int
    max_uses_per_user: int
    valid_from: datetime
    valid_until: datetime
    minimum_order_amount: float
    maximum_discount_amount: Optional[float] = None
    applicable_users: List[str] = []
    is_active: bool
    is_public: bool
    total_discount_given: float = 0.0
    total_orders: int = 0

class CouponValidateRequest(BaseModel):
    code: str
    order_amount: float = Field(0, ge=0)

class CouponValidationResponse(BaseModel):
    valid: bool
    message: str
    code: Optional[str] = None
    discount_type: Optional[str] = None
    discount_amount: float = 0.0

class BulkOperation(BaseModel):
    operation: str
    ids: List[str] = Field(..., min_length=1)

# --- Gift Cards ---

class GiftCardCreate(BaseModel):
    amount: float = Field(..., gt=0)
    type: str = Field("digital", pattern="^(digital|physical)$")
    code: Optional[str] = None
    issued_to: Optional[str] = None
    issued_to_email: Optional[EmailStr] = None
    message: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = None

    @field_validator('expires_at')
    def naive_utc(cls, v):
        return to_naive_utc(v)

    @field_validator('message')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class GiftCardRedeem(BaseModel):
    code: str
    amount: float = Field(..., gt=0)
    order_id: Optional[str] = None

class GiftCardUsageResponse(BaseModel):
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: float
    used_at: datetime

class GiftCardResponse(BaseModel):
    id: str
    code: str
    amount: float
    balance: float
    type: str
    status: str
    issued_by: str
    issued_to: Optional[str] = None
    issued_to_email: Optional[str] = None
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    used_at: Optional[datetime] = None
    usage_history: List[GiftCardUsageResponse] = []
    created_at: datetime

class GiftCardBalance(BaseModel):
    code: str
    balance: float
    status: str
    expires_at: Optional[datetime] = None

# --- Orders ---

class Address(BaseModel):
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
    email: Optional[str] = None

class OrderItemCreate(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    price: Optional[float] = Field(None, ge=0)

class OrderSummaryIn(BaseModel):
    subtotal: Optional[float] = Field(None, ge=0)
    tax: Optional[float] = Field(None, ge=0)
    shipping: Optional[float] = Field(None, ge=0)
    discount: Optional[float] = Field(None, ge=0)
    total: Optional[float] = Field(None, ge=0)

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1)
    summary: Optional[OrderSummaryIn] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_method: str = Field("cash_on_delivery", pattern="^(stripe|paypal|cash_on_delivery|bank_transfer)$")
    shipping_method: str = Field("standard", pattern="^(standard|express|overnight|pickup)$")
    customer_notes: Optional[str] = None
    coupon_code: Optional[str] = None
    gift_card_code: Optional[str] = None

    @field_validator('customer_notes')
    def sanitize_notes(cls, v):
        return sanitize_input(v)

class OrderStatusUpdate(BaseModel):
    status: Optional[str] = Field(None, pattern=ORDER_STATUS_PATTERN)
    payment_status: Optional[str] = Field(None, pattern=PAYMENT_STATUS_PATTERN)
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None

    @field_validator('admin_notes')
    def sanitize_notes(cls, v):
        return sanitize_input(v)

    @field_validator('estimated_delivery')
    def naive_utc(cls, v):
        return to_naive_utc(v)

class TrackingUpdate(BaseModel):
    tracking_number: str = Field(..., min_length=1)
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None

    @field_validator('estimated_delivery')
    def naive_utc(cls, v):
        return to_naive_utc(v)

class OrderCancel(BaseModel):
    reason: Optional[str] = None

class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    sku: Optional[str] = None
    quantity: int
    price: float
    total: float
    vendor_id: Optional[str] = None

class OrderResponse(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: List[OrderItemResponse]
    subtotal: float
    tax: float
    shipping: float
    discount: float
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
    status: str
    payment_status: str
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

# --- Reviews ---

class ReviewCreate(BaseModel):
    product_id: str
    order_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: str = Field(..., min_length=1, max_length=5000)

    @field_validator('title', 'comment')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, min_length=1, max_length=5000)

    @field_validator('title', 'comment')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ReviewFlag(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

class ReviewModeration(BaseModel):
    notes: Optional[str] = None

class ReviewVote(BaseModel):
    helpful: bool = True

class ReviewResponse(BaseModel):
    id: str
    user_id: str
    product_id: str
    order_id: str
    rating: int
    title: Optional[str] = None
    comment: str
    is_approved: bool
    is_moderated: bool
    is_flagged: bool
    helpful_votes: int
    total_votes: int
    is_verified_purchase: bool = True
    created_at: datetime

class ReviewStats(BaseModel):
    total: int
    approved: int
    pending: int
    flagged: int
    average_rating: float
    rating_distribution: dict

# --- Wishlist ---

class WishlistAdd(BaseModel):
    product_id: str

class WishlistItemResponse(BaseModel):
    product_id: str
    name: str = ""
    price: float = 0.0
    image: str = ""
    added_at: Optional[datetime] = None

class WishlistResponse(BaseModel):
    id: str
    user_id: str
    items: List[WishlistItemResponse]

# --- Comparisons ---

class ComparisonCreate(BaseModel):
    product_ids: List[str] = Field(..., min_length=2, max_length=4)
    title: Optional[str] = None

    @field_validator('title')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class ComparisonProductAdd(BaseModel):
    product_id: str

class ComparisonResponse(BaseModel):
    id: str
    user_id: str
    title: str
    product_ids: List[str]
    view_count: int = 0
    products: List[ProductResponse] = []
    created_at: datetime

# --- Packages ---

class PackageItemIn(BaseModel):
    product_id: str
    quantity: int = Field(1, gt=0)

class PackageCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    image: str = ""
    items: List[PackageItemIn] = Field(..., min_length=1)
    package_price: float = Field(..., ge=0)
    is_active: bool = True
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    @field_validator('starts_at', 'ends_at')
    def naive_utc(cls, v):
        return to_naive_utc(v)

class PackageUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    items: Optional[List[PackageItemIn]] = Field(None, min_length=1)
    package_price: Optional[float] = Field(None, ge=0)
    is_active: Optional[bool] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    @field_validator('name', 'description')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    @field_validator('starts_at', 'ends_at')
    def naive_utc(cls, v):
        return to_naive_utc(v)

class PackageItemResponse(BaseModel):
    product_id: str
    quantity: int

class PackageResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    image: str = ""
    items: List[PackageItemResponse]
    package_price: float
    original_total: float
    discount_percentage: float
    is_active: bool
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    created_at: datetime

class PackagesAndDiscounts(BaseModel):
    packages: List[PackageResponse]
    discounted_products: List[ProductResponse]

# --- Admin ---

class UserStatusUpdate(BaseModel):
    is_active: Optional[bool] = None
    role: Optional[str] = Field(None, pattern="^(user|vendor|admin)$")

class GiftCardCode(BaseModel):
    code: str = Field(..., min_length=1)

class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None
