# bakery/crud.py
"""
Catalog and blog persistence, plus the soft-delete helpers shared by every
soft-deletable entity (users, categories, products, blog posts).

Soft delete flips ``record_status`` to ``deleted``; ``restore`` flips it
back; ``purge`` removes the row for good.
"""
import logging
import re
import unicodedata
from typing import List, Optional, Type

from fastapi import HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from .models import BlogPost, BlogStatus, Category, Product, RecordStatus, User, utcnow

log = logging.getLogger("bakery.crud")


# -----------------------------------------------------------------------------
# Soft delete
# -----------------------------------------------------------------------------
def visible(query: Query, model: Type, include_deleted: bool = False) -> Query:
    if include_deleted:
        return query
    return query.filter(model.record_status == RecordStatus.ACTIVE.value)


def get_or_404(db: Session, model: Type, obj_id: int, what: str, include_deleted: bool = True):
    obj = db.get(model, obj_id)
    if obj is None or (not include_deleted and getattr(obj, "is_deleted", False)):
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return obj


def soft_delete(db: Session, obj, what: str) -> None:
    if obj.is_deleted:
        raise HTTPException(status_code=404, detail=f"{what} not found or already deleted")
    obj.record_status = RecordStatus.DELETED.value
    db.commit()
    log.info("%s %s soft-deleted", what, obj.id)


def restore(db: Session, obj, what: str) -> None:
    if not obj.is_deleted:
        raise HTTPException(status_code=404, detail=f"{what} not found or not deleted")
    obj.record_status = RecordStatus.ACTIVE.value
    db.commit()
    log.info("%s %s restored", what, obj.id)


def purge(db: Session, obj, what: str) -> None:
    obj_id = obj.id
    db.delete(obj)
    db.commit()
    log.info("%s %s permanently deleted", what, obj_id)


def apply_update(obj, payload, nullable=()) -> None:
    """Copy the fields the client actually sent onto ``obj``; ``null`` only clears ``nullable`` fields."""
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field not in nullable:
            continue
        setattr(obj, field, value)


# -----------------------------------------------------------------------------
# Products
# -----------------------------------------------------------------------------
PRODUCT_SORTS = {
    "newest": (Product.created_at.desc(), Product.id.desc()),
    "oldest": (Product.created_at.asc(), Product.id.asc()),
    "price_asc": (Product.price.asc(), Product.id.asc()),
    "price_desc": (Product.price.desc(), Product.id.desc()),
    "name": (Product.name.asc(), Product.id.asc()),
}


def list_products(
    db: Session,
    search: Optional[str] = None,
    category: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    sort: str = "newest",
    include_deleted: bool = False,
) -> List[Product]:
    if sort not in PRODUCT_SORTS:
        raise HTTPException(status_code=400, detail=f"Unknown sort '{sort}'")
    qry = visible(db.query(Product), Product, include_deleted)
    if search:
        like = f"%{search.strip()}%"
        qry = qry.filter(or_(Product.name.ilike(like), Product.description.ilike(like)))
    if category is not None:
        qry = qry.filter(Product.category_id == category)
    return qry.order_by(*PRODUCT_SORTS[sort]).offset(skip).limit(limit).all()


def search_products(db: Session, query: str) -> List[Product]:
    like = f"%{(query or '').strip()}%"
    return (
        visible(db.query(Product), Product)
        .filter(or_(Product.name.ilike(like), Product.description.ilike(like)))
        .order_by(*PRODUCT_SORTS["newest"])
        .all()
    )


def _check_category(db: Session, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    cat = db.get(Category, category_id)
    if cat is None or cat.is_deleted:
        raise HTTPException(status_code=400, detail="Category does not exist")


def create_product(db: Session, payload) -> Product:
    _check_category(db, payload.category_id)
    pr = Product(**payload.model_dump())
    db.add(pr)
    db.commit()
    db.refresh(pr)
    log.info("product %s created", pr.id)
    return pr


def update_product(db: Session, pr: Product, payload) -> Product:
    if "category_id" in payload.model_fields_set:
        _check_category(db, payload.category_id)
    apply_update(pr, payload, nullable=("category_id",))
    db.commit()
    db.refresh(pr)
    return pr


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------
def list_categories(db: Session, include_deleted: bool = False) -> List[Category]:
    return visible(db.query(Category), Category, include_deleted).order_by(Category.name.asc()).all()


def category_product_count(db: Session, category_id: int, active_only: bool = True) -> int:
    qry = db.query(Product).filter(Product.category_id == category_id)
    if active_only:
        qry = visible(qry, Product)
    return qry.count()


def delete_category(db: Session, cat: Category) -> None:
    if category_product_count(db, cat.id) > 0:
        raise HTTPException(status_code=409, detail="Category still has active products")
    soft_delete(db, cat, "Category")


def purge_category(db: Session, cat: Category) -> None:
    if category_product_count(db, cat.id, active_only=False) > 0:
        raise HTTPException(status_code=409, detail="Category is still referenced by products")
    purge(db, cat, "Category")


# -----------------------------------------------------------------------------
# Blog
# -----------------------------------------------------------------------------
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text.replace("đ", "d").replace("Đ", "D"))
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    return _SLUG_STRIP.sub("-", text).strip("-") or "post"


def unique_slug(db: Session, wanted: str, exclude_id: Optional[int] = None) -> str:
    base = slugify(wanted)
    slug, n = base, 2
    while True:
        qry = db.query(BlogPost).filter(BlogPost.slug == slug)
        if exclude_id is not None:
            qry = qry.filter(BlogPost.id != exclude_id)
        if qry.first() is None:
            return slug
        slug = f"{base}-{n}"
        n += 1


def blog_out(post: BlogPost) -> dict:
    text = post.content or ""
    excerpt = text if len(text) <= 200 else text[:200].rsplit(" ", 1)[0] + "..."
    return {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "content": text,
        "excerpt": excerpt,
        "image_url": post.image_url or "",
        "status": post.status,
        "author_id": post.user_id,
        "author_name": (post.author.full_name or post.author.username) if post.author else "",
        "published_at": post.published_at,
        "record_status": post.record_status,
        "is_deleted": post.is_deleted,
        "created_at": post.created_at,
        "updated_at": post.updated_at,
    }


def _published(db: Session) -> Query:
    return visible(db.query(BlogPost), BlogPost).filter(BlogPost.status == BlogStatus.PUBLISHED.value)


def published_posts(db: Session) -> List[BlogPost]:
    return _published(db).order_by(BlogPost.published_at.desc(), BlogPost.id.desc()).all()


def published_post(db: Session, slug_or_id: str) -> BlogPost:
    qry = _published(db)
    if slug_or_id.isdigit():
        post = qry.filter(or_(BlogPost.id == int(slug_or_id), BlogPost.slug == slug_or_id)).first()
    else:
        post = qry.filter(BlogPost.slug == slug_or_id).first()
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


def save_post(db: Session, post: BlogPost, fields: dict, author: Optional[User] = None) -> BlogPost:
    fields = {k: v for k, v in fields.items() if v is not None}
    slug = fields.pop("slug", None)
    for field, value in fields.items():
        setattr(post, field, value.value if isinstance(value, BlogStatus) else value)
    if slug or not post.slug:
        post.slug = unique_slug(db, slug or post.title, exclude_id=post.id)
    if post.status == BlogStatus.PUBLISHED.value and post.published_at is None:
        post.published_at = utcnow()
    if author is not None and post.user_id is None:
        post.user_id = author.id
    if post.id is None:
        db.add(post)
    db.commit()
    db.refresh(post)
    return post
