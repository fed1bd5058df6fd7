# bakery/main.py
from __future__ import annotations

import logging
import secrets
import time
from datetime import timedelta
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import cart as cart_svc
from . import crud, mail, orders as order_svc, reviews as review_svc, vnpay
from .admin import router as admin_router
from .auth import (
    VERIFY_PURPOSE,
    create_verify_token,
    decode_token,
    get_current_admin,
    get_current_user,
    get_optional_user,
    get_password_hash,
    token_for,
    verify_password,
)
from .config import CORS_ORIGINS, FRONTEND_URL, LOG_LEVEL, RESET_CODE_EXPIRE_MIN, VNP_TMN_CODE
from .database import Base, engine, get_db
from .models import (
    Banner, Category, Contact, OrderStatus, PasswordResetCode, Payment, PaymentMethod,
    PaymentStatus, Product, User, utcnow,
)
from .schemas import (
    BannerOut, BlogPostOut, CartAddIn, CartOut, CartQuantityIn, CategoryDetailOut, CategoryIn,
    CategoryOut, CategoryUpdate, ChangePasswordIn, CheckoutIn, ContactIn, ContactOut,
    ForgotPasswordIn, LoginIn, MessageOut, OrderOut, OrderStatusIn, PaymentOut, ProductIn,
    ProductOut, ProductReviewsOut, ProductUpdate, ProfileUpdate, RefundIn, RefundOut, RegisterIn,
    ResetPasswordIn, ReviewIn, ReviewOut, ReviewUpdate, TokenOut, UserOut, VerifyResetCodeIn,
    VnpayCreateIn, VnpayCreateOut,
)

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("bakery")

# -----------------------------------------------------------------------------
# App + CORS
# -----------------------------------------------------------------------------
app = FastAPI(title="Cake Shop API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["location"],
)

# -----------------------------------------------------------------------------
# DB: create tables if missing
# -----------------------------------------------------------------------------
Base.metadata.create_all(bind=engine)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    log.info("%s %s -> %s (%.1f ms)", request.method, request.url.path,
             response.status_code, (time.perf_counter() - start) * 1000)
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    log.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Something went wrong!"})


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _include_deleted(flag: bool, user: Optional[User]) -> bool:
    # only admins may look at deleted rows
    return bool(flag and user is not None and user.is_admin)


def _category_detail(db: Session, cat: Category) -> CategoryDetailOut:
    data = CategoryOut.model_validate(cat).model_dump()
    return CategoryDetailOut(**data, product_count=crud.category_product_count(db, cat.id))


def _valid_reset_code(db: Session, email: str, code: str) -> PasswordResetCode:
    row = (
        db.query(PasswordResetCode)
        .filter(
            PasswordResetCode.email == email.lower(),
            PasswordResetCode.code == code,
            PasswordResetCode.expires_at > utcnow(),
        )
        .order_by(PasswordResetCode.id.desc())
        .first()
    )
    if not row:
        raise HTTPException(status_code=400, detail="Invalid or expired code")
    return row


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
@app.post("/api/auth/register", response_model=TokenOut, status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email is already registered")
    if db.query(User).filter(User.username == payload.username).first():
        raise HTTPException(status_code=400, detail="Username is already taken")

    user = User(
        username=payload.username,
        email=email,
        password_hash=get_password_hash(payload.password),
        full_name=payload.full_name,
        address=payload.address,
        phone=payload.phone,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("user %s registered", user.id)

    mail.send_verification_email(user.email, create_verify_token(user))
    return {"access_token": token_for(user), "token_type": "bearer", "user": user}


@app.post("/api/auth/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    ident = payload.email
    user = (
        db.query(User)
        .filter(or_(User.email == ident.lower(), User.username == ident))
        .first()
    )
    if not user or user.is_deleted or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"access_token": token_for(user), "token_type": "bearer", "user": user}


@app.get("/api/auth/verify-email", response_model=MessageOut)
def verify_email(token: str, db: Session = Depends(get_db)):
    data = decode_token(token)
    if data.get("purpose") != VERIFY_PURPOSE:
        raise HTTPException(status_code=400, detail="Invalid verification link")
    user = db.get(User, int(data.get("sub", "0")))
    if not user or user.email != data.get("email"):
        raise HTTPException(status_code=400, detail="Invalid verification link")
    if not user.email_verified:
        user.email_verified = True
        db.commit()
    return {"message": "Email verified"}


@app.get("/api/auth/profile", response_model=UserOut)
def profile(current: User = Depends(get_current_user)):
    return current


@app.put("/api/auth/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, current: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    crud.apply_update(current, payload)
    db.commit()
    db.refresh(current)
    return current


@app.put("/api/auth/change-password", response_model=MessageOut)
def change_password(payload: ChangePasswordIn, current: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    if not verify_password(payload.old_password, current.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    current.password_hash = get_password_hash(payload.new_password)
    db.commit()
    return {"message": "Password changed"}


@app.post("/api/auth/forgot-password", response_model=MessageOut)
def forgot_password(payload: ForgotPasswordIn, db: Session = Depends(get_db)):
    email = payload.email.lower()
    user = db.query(User).filter(User.email == email).first()
    if user and not user.is_deleted:
        db.query(PasswordResetCode).filter(PasswordResetCode.email == email).delete()
        code = f"{secrets.randbelow(10 ** 6):06d}"
        db.add(PasswordResetCode(
            email=email,
            code=code,
            expires_at=utcnow() + timedelta(minutes=RESET_CODE_EXPIRE_MIN),
        ))
        db.commit()
        mail.send_reset_code(email, code)
    return {"message": "If that email is registered, a reset code has been sent"}


@app.post("/api/auth/verify-reset-code", response_model=MessageOut)
def verify_reset_code(payload: VerifyResetCodeIn, db: Session = Depends(get_db)):
    _valid_reset_code(db, payload.email, payload.code)
    return {"message": "Code is valid"}


@app.post("/api/auth/reset-password", response_model=MessageOut)
def reset_password(payload: ResetPasswordIn, db: Session = Depends(get_db)):
    email = payload.email.lower()
    _valid_reset_code(db, email, payload.code)
    user = db.query(User).filter(User.email == email).first()
    if not user or user.is_deleted:
        raise HTTPException(status_code=400, detail="Invalid or expired code")
    user.password_hash = get_password_hash(payload.new_password)
    db.query(PasswordResetCode).filter(PasswordResetCode.email == email).delete()
    db.commit()
    log.info("password reset for user %s", user.id)
    return {"message": "Password has been reset"}


# -----------------------------------------------------------------------------
# Products
# -----------------------------------------------------------------------------
@app.get("/api/products", response_model=List[ProductOut])
def list_products(
    search: Optional[str] = None,
    category: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    sort: str = "newest",
    include_deleted: bool = Query(False, alias="includeDeleted"),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return crud.list_products(db, search, category, skip, limit, sort,
                              _include_deleted(include_deleted, user))


@app.get("/api/products/search", response_model=List[ProductOut])
def search_products(query: str = "", db: Session = Depends(get_db)):
    return crud.search_products(db, query)


@app.get("/api/products/{pid}", response_model=ProductOut)
def get_product(pid: int, user: Optional[User] = Depends(get_optional_user),
                db: Session = Depends(get_db)):
    return crud.get_or_404(db, Product, pid, "Product", include_deleted=_include_deleted(True, user))


@app.post("/api/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductIn, _: User = Depends(get_current_admin),
                   db: Session = Depends(get_db)):
    return crud.create_product(db, payload)


@app.put("/api/products/{pid}", response_model=ProductOut)
def update_product(pid: int, payload: ProductUpdate, _: User = Depends(get_current_admin),
                   db: Session = Depends(get_db)):
    return crud.update_product(db, crud.get_or_404(db, Product, pid, "Product"), payload)


@app.delete("/api/products/{pid}", response_model=MessageOut)
def delete_product(pid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    crud.soft_delete(db, crud.get_or_404(db, Product, pid, "Product"), "Product")
    return {"message": "Product deleted"}


@app.put("/api/products/{pid}/restore", response_model=ProductOut)
def restore_product(pid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    pr = crud.get_or_404(db, Product, pid, "Product")
    crud.restore(db, pr, "Product")
    return pr


@app.delete("/api/products/{pid}/permanent", response_model=MessageOut)
def purge_product(pid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    crud.purge(db, crud.get_or_404(db, Product, pid, "Product"), "Product")
    return {"message": "Product permanently deleted"}


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------
@app.get("/api/categories", response_model=List[CategoryOut])
def list_categories(
    include_deleted: bool = Query(False, alias="includeDeleted"),
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return crud.list_categories(db, _include_deleted(include_deleted, user))


@app.get("/api/categories/{cid}", response_model=CategoryDetailOut)
def get_category(cid: int, user: Optional[User] = Depends(get_optional_user),
                 db: Session = Depends(get_db)):
    cat = crud.get_or_404(db, Category, cid, "Category", include_deleted=_include_deleted(True, user))
    return _category_detail(db, cat)


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(payload: CategoryIn, _: User = Depends(get_current_admin),
                    db: Session = Depends(get_db)):
    cat = Category(**payload.model_dump())
    db.add(cat)
    db.commit()
    db.refresh(cat)
    return cat


@app.put("/api/categories/{cid}", response_model=CategoryOut)
def update_category(cid: int, payload: CategoryUpdate, _: User = Depends(get_current_admin),
                    db: Session = Depends(get_db)):
    cat = crud.get_or_404(db, Category, cid, "Category")
    crud.apply_update(cat, payload)
    db.commit()
    db.refresh(cat)
    return cat


@app.delete("/api/categories/{cid}", response_model=MessageOut)
def delete_category(cid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    crud.delete_category(db, crud.get_or_404(db, Category, cid, "Category"))
    return {"message": "Category deleted"}


@app.put("/api/categories/{cid}/restore", response_model=CategoryOut)
def restore_category(cid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    cat = crud.get_or_404(db, Category, cid, "Category")
    crud.restore(db, cat, "Category")
    return cat


@app.delete("/api/categories/{cid}/permanent", response_model=MessageOut)
def purge_category(cid: int, _: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    crud.purge_category(db, crud.get_or_404(db, Category, cid, "Category"))
    return {"message": "Category permanently deleted"}


# -----------------------------------------------------------------------------
# Cart
# -----------------------------------------------------------------------------
@app.get("/api/cart", response_model=CartOut)
def get_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_svc.cart_view(db, current)


@app.post("/api/cart", response_model=CartOut)
def add_to_cart(payload: CartAddIn, current: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    return cart_svc.add_item(db, current, payload.product_id, payload.quantity)


@app.delete("/api/cart", response_model=CartOut)
def clear_cart(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_svc.clear(db, current)
    return cart_svc.cart_view(db, current)


@app.put("/api/cart/items/{item_id}", response_model=CartOut)
def update_cart_item(item_id: int, payload: CartQuantityIn,
                     current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_svc.update_item_quantity(db, current, item_id, payload.quantity)


@app.delete("/api/cart/items/{item_id}", response_model=CartOut)
def remove_cart_item(item_id: int, current: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    return cart_svc.remove_item(db, current, item_id)


@app.put("/api/cart/{product_id}", response_model=CartOut)
def update_cart_product(product_id: int, payload: CartQuantityIn,
                        current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_svc.update_product_quantity(db, current, product_id, payload.quantity)


@app.delete("/api/cart/{product_id}", response_model=CartOut)
def remove_cart_product(product_id: int, current: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return cart_svc.remove_product(db, current, product_id)


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------
@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(payload: CheckoutIn, current: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    order = order_svc.checkout(db, current, payload)
    mail.send_order_confirmation(current.email, order.id, order.total_amount)
    return order


@app.get("/api/orders/my-orders", response_model=List[OrderOut])
def my_orders(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_svc.orders_of(db, current)


@app.get("/api/orders/{oid}", response_model=OrderOut)
def get_order(oid: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_svc.get_visible_order(db, current, oid)


@app.put("/api/orders/{oid}/status", response_model=OrderOut)
def change_order_status(oid: int, payload: OrderStatusIn, request: Request,
                        current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_svc.get_visible_order(db, current, oid)
    return order_svc.change_status(db, current, order, payload.status.value, payload.note,
                                   vnpay.request_ip(request))


# -----------------------------------------------------------------------------
# Payment (VNPay)
# -----------------------------------------------------------------------------
IPN_MESSAGES = {
    "00": "Confirm Success",
    "01": "Order not found",
    "02": "Order already confirmed",
    "04": "Invalid amount",
    "97": "Invalid signature",
}


@app.post("/api/payment/vnpay/create", response_model=VnpayCreateOut)
def vnpay_create(payload: VnpayCreateIn, request: Request,
                 current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not VNP_TMN_CODE:
        raise HTTPException(status_code=500, detail="VNPay is not configured (VNP_TMN_CODE)")
    order = order_svc.get_visible_order(db, current, payload.order_id)
    if order.payment_method != PaymentMethod.VNPAY.value:
        raise HTTPException(status_code=400, detail="Order is not paid with VNPay")
    if order.status != OrderStatus.PENDING.value:
        raise HTTPException(status_code=400, detail="Only pending orders can be paid")

    payment = order_svc.latest_payment(order)
    if payment is not None and payment.status == PaymentStatus.COMPLETED.value:
        raise HTTPException(status_code=400, detail="Order is already paid")
    if payment is None or payment.status != PaymentStatus.PENDING.value:
        db.add(Payment(order_id=order.id, payment_method=PaymentMethod.VNPAY.value,
                       amount=order.total_amount, status=PaymentStatus.PENDING.value))
        db.commit()

    url = vnpay.payment_url(order.id, order.total_amount, vnpay.request_ip(request),
                            payload.bank_code, payload.order_info)
    return {"payment_url": url}


@app.get("/api/payment/vnpay/return")
def vnpay_return(request: Request, db: Session = Depends(get_db)):
    params = dict(request.query_params)
    code = params.get("vnp_ResponseCode", "99")
    if not vnpay.verify(params):
        log.warning("VNPay return with bad signature for %s", params.get("vnp_TxnRef"))
        success, code = False, "97"
    else:
        result = order_svc.record_gateway_result(db, params)
        success = result["success"]
    query = urlencode({
        "orderId": params.get("vnp_TxnRef", ""),
        "status": "success" if success else "failed",
        "code": code,
        "message": vnpay.response_message(code),
    })
    return RedirectResponse(f"{FRONTEND_URL}/payment-success?{query}", status_code=302)


@app.get("/api/payment/vnpay/ipn")
def vnpay_ipn(request: Request, db: Session = Depends(get_db)):
    params = dict(request.query_params)
    if not vnpay.verify(params):
        rsp = "97"
    else:
        rsp = order_svc.record_gateway_result(db, params)["code"]
    return {"RspCode": rsp, "Message": IPN_MESSAGES[rsp]}


@app.get("/api/payment/order/{oid}", response_model=PaymentOut)
def payment_for_order(oid: int, current: User = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    payment = order_svc.latest_payment(order_svc.get_visible_order(db, current, oid))
    if payment is None:
        raise HTTPException(status_code=404, detail="No payment for this order")
    return payment


@app.post("/api/payment/vnpay/refund", response_model=RefundOut)
def vnpay_refund(payload: RefundIn, request: Request, admin: User = Depends(get_current_admin),
                 db: Session = Depends(get_db)):
    order = order_svc.get_order(db, payload.order_id)
    payment = order_svc.latest_payment(order)
    if payment is None:
        raise HTTPException(status_code=404, detail="No payment for this order")
    reason = (payload.reason or "").strip() or "Refund requested by shop"
    payment = order_svc.refund_payment(db, payment, admin, reason, vnpay.request_ip(request))
    return {
        "message": "Refund completed",
        "refund_transaction_no": payment.refund_transaction_no,
        "refund_amount": payment.refund_amount,
        "reason": reason,
    }


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------
@app.get("/api/products/{pid}/reviews", response_model=ProductReviewsOut)
def product_reviews(pid: int, db: Session = Depends(get_db)):
    return review_svc.product_reviews(db, pid)


@app.post("/api/products/{pid}/reviews", response_model=ReviewOut, status_code=201)
def add_review(pid: int, payload: ReviewIn, current: User = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return review_svc.add_review(db, current, pid, payload)


@app.put("/api/reviews/{rid}", response_model=ReviewOut)
def update_review(rid: int, payload: ReviewUpdate, current: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    return review_svc.update_review(db, current, review_svc.get_review(db, rid), payload)


@app.delete("/api/reviews/{rid}", response_model=MessageOut)
def delete_review(rid: int, current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    review_svc.delete_review(db, current, review_svc.get_review(db, rid))
    return {"message": "Review deleted"}


@app.get("/api/user/reviews", response_model=List[ReviewOut])
def my_reviews(current: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return review_svc.user_reviews(db, current)


# -----------------------------------------------------------------------------
# Banners / blog / contacts (public)
# -----------------------------------------------------------------------------
@app.get("/api/banners", response_model=List[BannerOut])
def list_banners(db: Session = Depends(get_db)):
    return (
        db.query(Banner)
        .filter(Banner.is_active.is_(True))
        .order_by(Banner.position.asc(), Banner.id.asc())
        .all()
    )


@app.get("/api/blog", response_model=List[BlogPostOut])
def list_blog(db: Session = Depends(get_db)):
    return [crud.blog_out(p) for p in crud.published_posts(db)]


@app.get("/api/blog/{slug_or_id}", response_model=BlogPostOut)
def get_blog_post(slug_or_id: str, db: Session = Depends(get_db)):
    return crud.blog_out(crud.published_post(db, slug_or_id))


@app.post("/api/contacts", response_model=ContactOut, status_code=201)
def create_contact(payload: ContactIn, current: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    c = Contact(user_id=current.id, **payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    log.info("contact message %s from user %s", c.id, current.id)
    return c


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------
@app.get("/api/health")
def health():
    return {"ok": True, "vnpay": bool(VNP_TMN_CODE)}


app.include_router(admin_router)
