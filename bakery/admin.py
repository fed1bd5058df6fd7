# bakery/admin.py
"""Back-office routes. Everything here requires an admin bearer token."""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from . import crud, orders as order_svc, reviews as review_svc, vnpay
from .auth import get_current_admin
from .config import LOW_STOCK_THRESHOLD
from .database import get_db
from .models import (
    Banner, BlogPost, Contact, Order, OrderStatus, Product, Role, User,
)
from .schemas import (
    AdminReviewOut, BannerIn, BannerOut, BannerUpdate, BlogPostIn, BlogPostOut, BlogPostUpdate,
    BulkStockUpdateIn, ContactOut, CustomerDetailOut, CustomerOut, DashboardOut, InventoryItemOut,
    MessageOut, OrderOut, OrderStatusIn, ReviewOut, ReviewUpdate, RoleIn, StockUpdateIn,
    UserAdminUpdate, UserOut,
)

log = logging.getLogger("bakery.admin")

router = APIRouter(prefix="/api/admin", dependencies=[Depends(get_current_admin)])

REVENUE_STATUSES = (OrderStatus.DELIVERED.value, OrderStatus.COMPLETED.value)


# -----------------------------------------------------------------------------
# Users
# -----------------------------------------------------------------------------
@router.get("/users", response_model=List[UserOut])
def list_users(
    include_deleted: bool = Query(False, alias="includeDeleted"),
    role: Optional[Role] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    qry = crud.visible(db.query(User), User, include_deleted)
    if role:
        qry = qry.filter(User.role == role.value)
    if search:
        like = f"%{search.strip()}%"
        qry = qry.filter(or_(User.username.ilike(like), User.email.ilike(like), User.full_name.ilike(like)))
    return qry.order_by(User.created_at.desc(), User.id.desc()).all()


@router.get("/users/{uid}", response_model=UserOut)
def get_user(uid: int, db: Session = Depends(get_db)):
    return crud.get_or_404(db, User, uid, "User")


@router.put("/users/{uid}", response_model=UserOut)
def update_user(uid: int, payload: UserAdminUpdate, db: Session = Depends(get_db)):
    u = crud.get_or_404(db, User, uid, "User")
    fields = payload.model_fields_set
    if "email" in fields and payload.email:
        email = payload.email.lower()
        if db.query(User).filter(User.email == email, User.id != uid).first():
            raise HTTPException(status_code=400, detail="Email is already registered")
        payload.email = email
    if "username" in fields and payload.username:
        if db.query(User).filter(User.username == payload.username, User.id != uid).first():
            raise HTTPException(status_code=400, detail="Username is already taken")
    crud.apply_update(u, payload)
    db.commit()
    db.refresh(u)
    return u


@router.put("/users/{uid}/role", response_model=UserOut)
def set_role(uid: int, payload: RoleIn, admin: User = Depends(get_current_admin),
             db: Session = Depends(get_db)):
    u = crud.get_or_404(db, User, uid, "User")
    if u.id == admin.id and payload.role != Role.ADMIN:
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
    u.role = payload.role.value
    db.commit()
    db.refresh(u)
    log.info("user %s role set to %s by admin %s", u.id, u.role, admin.id)
    return u


@router.delete("/users/{uid}", response_model=MessageOut)
def delete_user(uid: int, admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    if uid == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    crud.soft_delete(db, crud.get_or_404(db, User, uid, "User"), "User")
    return {"message": "User deleted"}


@router.put("/users/{uid}/restore", response_model=UserOut)
def restore_user(uid: int, db: Session = Depends(get_db)):
    u = crud.get_or_404(db, User, uid, "User")
    crud.restore(db, u, "User")
    return u


@router.delete("/users/{uid}/permanent", response_model=MessageOut)
def purge_user(uid: int, admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    if uid == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    crud.purge(db, crud.get_or_404(db, User, uid, "User"), "User")
    return {"message": "User permanently deleted"}


# -----------------------------------------------------------------------------
# Customers
# -----------------------------------------------------------------------------
def _customer_stats(db: Session):
    return (
        db.query(
            Order.user_id,
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0.0),
        )
        .filter(Order.status != OrderStatus.CANCELLED.value)
        .group_by(Order.user_id)
    )


def _customer_out(u: User, count: int, spent: float) -> CustomerOut:
    data = UserOut.model_validate(u).model_dump()
    return CustomerOut(**data, order_count=count, total_spent=round(spent or 0.0, 2))


@router.get("/customers", response_model=List[CustomerOut])
def list_customers(db: Session = Depends(get_db)):
    stats = {uid: (n, total) for uid, n, total in _customer_stats(db).all()}
    users = (
        crud.visible(db.query(User), User)
        .filter(User.role == Role.USER.value)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )
    return [_customer_out(u, *stats.get(u.id, (0, 0.0))) for u in users]


@router.get("/customers/{uid}", response_model=CustomerDetailOut)
def get_customer(uid: int, db: Session = Depends(get_db)):
    u = crud.get_or_404(db, User, uid, "Customer")
    row = _customer_stats(db).filter(Order.user_id == uid).first()
    count, spent = (row[1], row[2]) if row else (0, 0.0)
    out = _customer_out(u, count, spent).model_dump()
    orders = [OrderOut.model_validate(o) for o in order_svc.orders_of(db, u)]
    return CustomerDetailOut(**out, orders=orders)


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------
@router.get("/orders", response_model=List[OrderOut])
def list_orders(status: Optional[OrderStatus] = None, db: Session = Depends(get_db)):
    return order_svc.all_orders(db, status.value if status else None)


@router.get("/orders/{oid}", response_model=OrderOut)
def get_order(oid: int, db: Session = Depends(get_db)):
    return order_svc.get_order(db, oid)


@router.put("/orders/{oid}/status", response_model=OrderOut)
def change_order_status(oid: int, payload: OrderStatusIn, request: Request,
                        admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    order = order_svc.get_order(db, oid)
    ip = vnpay.request_ip(request)
    return order_svc.change_status(db, admin, order, payload.status.value, payload.note, ip)


# -----------------------------------------------------------------------------
# Reviews
# -----------------------------------------------------------------------------
@router.get("/reviews", response_model=List[AdminReviewOut])
def list_reviews(product_id: Optional[int] = None, db: Session = Depends(get_db)):
    return review_svc.all_reviews(db, product_id)


@router.get("/reviews/{rid}", response_model=AdminReviewOut)
def get_review(rid: int, db: Session = Depends(get_db)):
    return review_svc.get_review(db, rid)


@router.put("/reviews/{rid}", response_model=ReviewOut)
def update_review(rid: int, payload: ReviewUpdate, admin: User = Depends(get_current_admin),
                  db: Session = Depends(get_db)):
    return review_svc.update_review(db, admin, review_svc.get_review(db, rid), payload)


@router.delete("/reviews/{rid}", response_model=MessageOut)
def delete_review(rid: int, admin: User = Depends(get_current_admin), db: Session = Depends(get_db)):
    review_svc.delete_review(db, admin, review_svc.get_review(db, rid))
    return {"message": "Review deleted"}


# -----------------------------------------------------------------------------
# Banners
# -----------------------------------------------------------------------------
@router.get("/banners", response_model=List[BannerOut])
def list_banners(db: Session = Depends(get_db)):
    return db.query(Banner).order_by(Banner.position.asc(), Banner.id.asc()).all()


@router.post("/banners", response_model=BannerOut, status_code=201)
def create_banner(payload: BannerIn, db: Session = Depends(get_db)):
    data = payload.model_dump()
    if data["position"] is None:
        last = db.query(func.max(Banner.position)).scalar()
        data["position"] = (last or 0) + 1
    b = Banner(**data)
    db.add(b)
    db.commit()
    db.refresh(b)
    return b


@router.put("/banners/{bid}", response_model=BannerOut)
def update_banner(bid: int, payload: BannerUpdate, db: Session = Depends(get_db)):
    b = crud.get_or_404(db, Banner, bid, "Banner")
    crud.apply_update(b, payload)
    db.commit()
    db.refresh(b)
    return b


@router.delete("/banners/{bid}", response_model=MessageOut)
def delete_banner(bid: int, db: Session = Depends(get_db)):
    b = crud.get_or_404(db, Banner, bid, "Banner")
    db.delete(b)
    db.commit()
    return {"message": "Banner deleted"}


# -----------------------------------------------------------------------------
# Blog
# -----------------------------------------------------------------------------
@router.get("/blog", response_model=List[BlogPostOut])
def list_posts(include_deleted: bool = Query(False, alias="includeDeleted"),
               db: Session = Depends(get_db)):
    posts = (
        crud.visible(db.query(BlogPost), BlogPost, include_deleted)
        .order_by(BlogPost.created_at.desc(), BlogPost.id.desc())
        .all()
    )
    return [crud.blog_out(p) for p in posts]


@router.post("/blog", response_model=BlogPostOut, status_code=201)
def create_post(payload: BlogPostIn, admin: User = Depends(get_current_admin),
                db: Session = Depends(get_db)):
    return crud.blog_out(crud.save_post(db, BlogPost(), payload.model_dump(), author=admin))


@router.get("/blog/{post_id}", response_model=BlogPostOut)
def get_post(post_id: int, db: Session = Depends(get_db)):
    return crud.blog_out(crud.get_or_404(db, BlogPost, post_id, "Post"))


@router.put("/blog/{post_id}", response_model=BlogPostOut)
def update_post(post_id: int, payload: BlogPostUpdate, db: Session = Depends(get_db)):
    post = crud.get_or_404(db, BlogPost, post_id, "Post")
    return crud.blog_out(crud.save_post(db, post, payload.model_dump(exclude_unset=True)))


@router.delete("/blog/{post_id}", response_model=MessageOut)
def delete_post(post_id: int, db: Session = Depends(get_db)):
    crud.soft_delete(db, crud.get_or_404(db, BlogPost, post_id, "Post"), "Post")
    return {"message": "Post deleted"}


@router.put("/blog/{post_id}/restore", response_model=BlogPostOut)
def restore_post(post_id: int, db: Session = Depends(get_db)):
    post = crud.get_or_404(db, BlogPost, post_id, "Post")
    crud.restore(db, post, "Post")
    return crud.blog_out(post)


@router.delete("/blog/{post_id}/permanent", response_model=MessageOut)
def purge_post(post_id: int, db: Session = Depends(get_db)):
    crud.purge(db, crud.get_or_404(db, BlogPost, post_id, "Post"), "Post")
    return {"message": "Post permanently deleted"}


# -----------------------------------------------------------------------------
# Contacts
# -----------------------------------------------------------------------------
@router.get("/contacts", response_model=List[ContactOut])
def list_contacts(db: Session = Depends(get_db)):
    return db.query(Contact).order_by(Contact.created_at.desc(), Contact.id.desc()).all()


@router.delete("/contacts/{cid}", response_model=MessageOut)
def delete_contact(cid: int, db: Session = Depends(get_db)):
    c = crud.get_or_404(db, Contact, cid, "Contact")
    db.delete(c)
    db.commit()
    return {"message": "Contact deleted"}


# -----------------------------------------------------------------------------
# Inventory
# -----------------------------------------------------------------------------
def stock_status(stock: int) -> str:
    if stock <= 0:
        return "out"
    if stock <= LOW_STOCK_THRESHOLD:
        return "low"
    return "normal"


def _inventory_item(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "category_name": p.category_name,
        "current_stock": p.stock,
        "min_stock_level": LOW_STOCK_THRESHOLD,
        "stock_status": stock_status(p.stock),
        "price": p.price,
    }


@router.get("/inventory", response_model=List[InventoryItemOut])
def inventory(status: Optional[str] = None, db: Session = Depends(get_db)):
    items = [
        _inventory_item(p)
        for p in crud.visible(db.query(Product), Product).order_by(Product.stock.asc(), Product.id.asc())
    ]
    if status:
        items = [i for i in items if i["stock_status"] == status]
    return items


@router.post("/inventory/bulk-update", response_model=List[InventoryItemOut])
def bulk_update_stock(payload: BulkStockUpdateIn, admin: User = Depends(get_current_admin),
                      db: Session = Depends(get_db)):
    # resolve every id before touching stock so a bad id leaves the batch unapplied
    products = [crud.get_or_404(db, Product, row.id, f"Product {row.id}") for row in payload.updates]
    for p, row in zip(products, payload.updates):
        p.stock = row.quantity
    db.commit()
    log.info("admin %s set stock of %s products (%s)", admin.id, len(products), payload.reason or "-")
    return [_inventory_item(p) for p in products]


@router.post("/inventory/{pid}/update", response_model=InventoryItemOut)
def update_stock(pid: int, payload: StockUpdateIn, admin: User = Depends(get_current_admin),
                 db: Session = Depends(get_db)):
    p = crud.get_or_404(db, Product, pid, "Product")
    old = p.stock
    p.stock = payload.quantity
    db.commit()
    db.refresh(p)
    log.info("admin %s set stock of product %s: %s -> %s (%s)",
             admin.id, p.id, old, p.stock, payload.reason or "-")
    return _inventory_item(p)


# -----------------------------------------------------------------------------
# Dashboard
# -----------------------------------------------------------------------------
@router.get("/dashboard", response_model=DashboardOut)
def dashboard(db: Session = Depends(get_db)):
    revenue = (
        db.query(func.coalesce(func.sum(Order.total_amount), 0.0))
        .filter(Order.status.in_(REVENUE_STATUSES))
        .scalar()
    )
    by_status = db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
    recent = db.query(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5).all()
    return {
        "total_revenue": round(revenue or 0.0, 2),
        "total_orders": db.query(Order).count(),
        "total_products": crud.visible(db.query(Product), Product).count(),
        "total_customers": crud.visible(db.query(User), User).filter(User.role == Role.USER.value).count(),
        "orders_by_status": [{"status": s, "count": n} for s, n in by_status],
        "recent_orders": recent,
    }
