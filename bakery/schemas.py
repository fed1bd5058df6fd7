# bakery/schemas.py
"""
Request/response schemas (Pydantic v2).

Input models accept the camelCase keys the storefront client sends
(``productId``, ``newPassword``...) as well as snake_case.
"""
import re
from datetime import datetime
from typing import List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing_extensions import Annotated

from .models import BlogStatus, OrderStatus, PaymentMethod, Role

NAME_RE = re.compile(r"^[a-zA-ZÀ-ỹ\s]+$")
USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,}$")
PHONE_RE = re.compile(r"^0\d{9}$")
LABEL_RE = re.compile(r"^[a-zA-ZÀ-ỹ0-9_\s]+$")
IMAGE_URL_RE = re.compile(r"^https?://.+\.(jpg|jpeg|png|webp|gif)$", re.IGNORECASE)
FORBIDDEN_CONTENT_RE = re.compile(r"[<>$]")


def _full_name(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Full name is required")
    if not NAME_RE.match(v):
        raise ValueError("Full name may only contain letters and spaces")
    return v


def _address(v: str) -> str:
    v = (v or "").strip()
    if len(v) < 5:
        raise ValueError("Address must be at least 5 characters")
    return v


def _phone(v: str) -> str:
    v = (v or "").strip()
    if not PHONE_RE.match(v):
        raise ValueError("Phone must start with 0 and have 10 digits")
    return v


def _username(v: str) -> str:
    v = (v or "").strip()
    if not USERNAME_RE.match(v):
        raise ValueError("Username: letters, digits and underscores only, at least 3 characters")
    return v


def _label(v: str, min_len: int, what: str) -> str:
    v = (v or "").strip()
    if len(v) < min_len:
        raise ValueError(f"{what} must be at least {min_len} characters")
    if not LABEL_RE.match(v):
        raise ValueError(f"{what} may only contain letters, digits, underscores and spaces")
    return v


def _image_url(v: Optional[str]) -> Optional[str]:
    if v and not IMAGE_URL_RE.match(v):
        raise ValueError("Image must be an http(s) URL to a jpg/jpeg/png/webp/gif file")
    return v


Username = Annotated[str, AfterValidator(_username)]
FullName = Annotated[str, AfterValidator(_full_name)]
Address = Annotated[str, AfterValidator(_address)]
Phone = Annotated[str, AfterValidator(_phone)]
ImageUrl = Annotated[Optional[str], AfterValidator(_image_url)]
CategoryName = Annotated[str, AfterValidator(lambda v: _label(v, 3, "Category name"))]
BannerTitle = Annotated[str, AfterValidator(lambda v: _label(v, 3, "Title"))]
BlogTitle = Annotated[str, AfterValidator(lambda v: _label(v, 5, "Title"))]


class _CamelIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MessageOut(BaseModel):
    message: str


# -----------------------------------------------------------------------------
# Auth / users
# -----------------------------------------------------------------------------
class RegisterIn(BaseModel):
    username: Username
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    full_name: FullName
    address: Address
    phone: Phone


class LoginIn(BaseModel):
    email: str = Field(..., description="email or username")
    password: str = Field(..., min_length=6)

    @field_validator("email")
    @classmethod
    def _login(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Email or username is required")
        return v


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str] = ""
    address: Optional[str] = ""
    phone: Optional[str] = ""
    role: str
    email_verified: bool
    record_status: str
    created_at: datetime
    model_config = {"from_attributes": True}


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class ProfileUpdate(BaseModel):
    full_name: Optional[FullName] = None
    address: Optional[Address] = None
    phone: Optional[Phone] = None


class ChangePasswordIn(_CamelIn):
    old_password: str = Field(..., alias="oldPassword")
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=128)


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class VerifyResetCodeIn(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)


class ResetPasswordIn(_CamelIn):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=128)


class UserAdminUpdate(ProfileUpdate):
    email: Optional[EmailStr] = None
    username: Optional[Username] = None


class RoleIn(BaseModel):
    role: Role


class CustomerOut(UserOut):
    order_count: int = 0
    total_spent: float = 0.0


class CustomerDetailOut(CustomerOut):
    orders: List["OrderOut"] = []


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------
class CategoryIn(BaseModel):
    name: CategoryName
    description: Optional[str] = Field("", max_length=255)
    image_url: Optional[str] = ""


class CategoryUpdate(BaseModel):
    name: Optional[CategoryName] = None
    description: Optional[str] = Field(None, max_length=255)
    image_url: Optional[str] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = ""
    image_url: Optional[str] = ""
    record_status: str
    is_deleted: bool
    created_at: datetime
    model_config = {"from_attributes": True}


class CategoryDetailOut(CategoryOut):
    product_count: int = 0


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = ""
    price: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = ""


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = None


class ProductOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = ""
    price: float
    stock: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    image_url: Optional[str] = ""
    record_status: str
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}


# -----------------------------------------------------------------------------
# Cart
# -----------------------------------------------------------------------------
class CartAddIn(_CamelIn):
    product_id: int = Field(..., alias="productId")
    quantity: int = Field(1, ge=1)


class CartQuantityIn(BaseModel):
    quantity: int = Field(..., ge=1)


class CartProductOut(BaseModel):
    id: int
    name: str
    price: float
    stock: int
    image_url: Optional[str] = ""
    model_config = {"from_attributes": True}


class CartItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    subtotal: float
    product: CartProductOut


class CartOut(BaseModel):
    items: List[CartItemOut] = []
    total: float = 0.0
    item_count: int = 0


# -----------------------------------------------------------------------------
# Orders / payments
# -----------------------------------------------------------------------------
class CheckoutIn(BaseModel):
    name: str
    shipping_address: str
    phone: str
    note: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD

    @field_validator("name", "shipping_address", "phone")
    @classmethod
    def _required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Recipient name, address and phone are required")
        return v


class OrderStatusIn(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    quantity: int
    price: float
    subtotal: float
    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: str
    shipping_address: str
    phone: str
    note: Optional[str] = None
    payment_method: str
    status: str
    total_amount: float
    next_statuses: List[str] = []
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = []
    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: int
    order_id: int
    payment_method: str
    amount: float
    status: str
    transaction_no: Optional[str] = None
    bank_code: Optional[str] = None
    pay_date: Optional[str] = None
    response_code: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    refund_transaction_no: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    model_config = {"from_attributes": True}


class VnpayCreateIn(_CamelIn):
    order_id: int = Field(..., alias="orderId")
    bank_code: Optional[str] = Field(None, alias="bankCode", max_length=20)
    order_info: Optional[str] = Field(None, alias="orderInfo", max_length=255)


class VnpayCreateOut(_CamelIn):
    payment_url: str = Field(..., alias="paymentUrl")


class RefundIn(_CamelIn):
    order_id: int = Field(..., alias="orderId")
    reason: Optional[str] = None


class RefundOut(_CamelIn):
    message: str
    refund_transaction_no: str = Field(..., alias="refundTransactionNo")
    refund_amount: float = Field(..., alias="refundAmount")
    reason: str


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------
def _review_content(v: Optional[str]) -> Optional[str]:
    if v is not None and FORBIDDEN_CONTENT_RE.search(v):
        raise ValueError("Content contains forbidden characters")
    return v


class ReviewIn(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    content: Optional[str] = Field(None, max_length=1000)
    parent_id: Optional[int] = None

    @field_validator("content")
    @classmethod
    def _content(cls, v):
        return _review_content(v)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    content: Optional[str] = Field(None, max_length=1000)

    @field_validator("content")
    @classmethod
    def _content(cls, v):
        return _review_content(v)


class ReviewUserOut(BaseModel):
    id: int
    username: str
    full_name: Optional[str] = ""
    model_config = {"from_attributes": True}


class ReviewOut(BaseModel):
    id: int
    user_id: int
    product_id: int
    parent_id: Optional[int] = None
    rating: Optional[int] = None
    content: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    user: Optional[ReviewUserOut] = None
    replies: List["ReviewOut"] = []
    model_config = {"from_attributes": True}


class AdminReviewOut(ReviewOut):
    product_name: Optional[str] = None


class ProductReviewsOut(_CamelIn):
    reviews: List[ReviewOut] = []
    average_rating: float = Field(0.0, alias="averageRating")
    rating_count: int = Field(0, alias="ratingCount")


# -----------------------------------------------------------------------------
# Banners / blog / contacts
# -----------------------------------------------------------------------------
class BannerIn(BaseModel):
    title: BannerTitle
    subtitle: Optional[str] = ""
    description: Optional[str] = Field("", max_length=255)
    image: ImageUrl = ""
    button_text: Optional[str] = ""
    button_link: Optional[str] = ""
    position: Optional[int] = Field(None, ge=1)
    is_active: bool = True


class BannerUpdate(BaseModel):
    title: Optional[BannerTitle] = None
    subtitle: Optional[str] = None
    description: Optional[str] = Field(None, max_length=255)
    image: ImageUrl = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    position: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


class BannerOut(BaseModel):
    id: int
    title: str
    subtitle: Optional[str] = ""
    description: Optional[str] = ""
    image: Optional[str] = ""
    button_text: Optional[str] = ""
    button_link: Optional[str] = ""
    position: int
    is_active: bool
    model_config = {"from_attributes": True}


class BlogPostIn(BaseModel):
    title: BlogTitle
    slug: Optional[str] = Field(None, max_length=255)
    content: str
    image_url: ImageUrl = ""
    status: BlogStatus = BlogStatus.DRAFT

    @field_validator("content")
    @classmethod
    def _content(cls, v: str) -> str:
        if not (v or "").strip():
            raise ValueError("Content is required")
        return v


class BlogPostUpdate(BaseModel):
    title: Optional[BlogTitle] = None
    slug: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = None
    image_url: ImageUrl = None
    status: Optional[BlogStatus] = None

    @field_validator("content")
    @classmethod
    def _content(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Content is required")
        return v


class BlogPostOut(BaseModel):
    id: int
    title: str
    slug: str
    content: str
    excerpt: str = ""
    image_url: Optional[str] = ""
    status: str
    author_id: Optional[int] = None
    author_name: Optional[str] = ""
    published_at: Optional[datetime] = None
    record_status: str
    is_deleted: bool
    created_at: datetime
    updated_at: datetime


class ContactIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    subject: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)


class ContactOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: str
    email: str
    subject: str
    message: str
    created_at: datetime
    model_config = {"from_attributes": True}


# -----------------------------------------------------------------------------
# Back-office
# -----------------------------------------------------------------------------
class InventoryItemOut(BaseModel):
    id: int
    name: str
    category_name: Optional[str] = None
    current_stock: int
    min_stock_level: int
    stock_status: str
    price: float


class StockUpdateIn(BaseModel):
    quantity: int = Field(..., ge=0)
    reason: Optional[str] = None


class BulkStockItem(BaseModel):
    id: int
    quantity: int = Field(..., ge=0)


class BulkStockUpdateIn(BaseModel):
    updates: List[BulkStockItem] = Field(..., min_length=1)
    reason: Optional[str] = None


class StatusCount(BaseModel):
    status: str
    count: int


class DashboardOut(BaseModel):
    total_revenue: float
    total_orders: int
    total_products: int
    total_customers: int
    orders_by_status: List[StatusCount] = []
    recent_orders: List[OrderOut] = []
CustomerDetailOut.model_rebuild()
