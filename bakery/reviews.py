# bakery/reviews.py
"""
Product reviews as a two-level tree: rated top-level reviews and unrated
replies. A reply to a reply is attached to the thread's top-level review.
"""
import logging
from collections import defaultdict
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session, joinedload

from .models import Product, Review, User

log = logging.getLogger("bakery.reviews")


def _get_product(db: Session, product_id: int) -> Product:
    pr = db.get(Product, product_id)
    if pr is None or pr.is_deleted:
        raise HTTPException(status_code=404, detail="Product not found")
    return pr


def _tree_node(r: Review, replies: List[Review]) -> dict:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "product_id": r.product_id,
        "parent_id": r.parent_id,
        "rating": r.rating,
        "content": r.content,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
        "user": r.user,
        "replies": [_tree_node(c, []) for c in replies],
    }


def rating_summary(reviews: List[Review]):
    ratings = [r.rating for r in reviews if r.parent_id is None and r.rating is not None]
    if not ratings:
        return 0.0, 0
    return round(sum(ratings) / len(ratings), 1), len(ratings)


def product_reviews(db: Session, product_id: int) -> dict:
    _get_product(db, product_id)
    rows = (
        db.query(Review)
        .options(joinedload(Review.user))
        .filter(Review.product_id == product_id)
        .all()
    )
    children = defaultdict(list)
    top = []
    for r in rows:
        if r.parent_id is None:
            top.append(r)
        else:
            children[r.parent_id].append(r)

    top.sort(key=lambda r: (r.created_at, r.id), reverse=True)
    tree = []
    for r in top:
        replies = sorted(children.get(r.id, []), key=lambda c: (c.created_at, c.id))
        tree.append(_tree_node(r, replies))

    avg, count = rating_summary(rows)
    return {"reviews": tree, "average_rating": avg, "rating_count": count}


def add_review(db: Session, user: User, product_id: int, payload) -> Review:
    _get_product(db, product_id)
    content = (payload.content or "").strip() or None

    parent_id: Optional[int] = None
    if payload.parent_id is not None:
        parent = db.get(Review, payload.parent_id)
        if parent is None or parent.product_id != product_id:
            raise HTTPException(status_code=404, detail="Parent review not found")
        if payload.rating is not None:
            raise HTTPException(status_code=400, detail="Replies cannot carry a rating")
        if not content:
            raise HTTPException(status_code=400, detail="Reply content is required")
        parent_id = parent.parent_id or parent.id
    else:
        if payload.rating is None and not content:
            raise HTTPException(status_code=400, detail="Content is required when no rating is given")
        if payload.rating is not None:
            already = (
                db.query(Review)
                .filter(
                    Review.user_id == user.id,
                    Review.product_id == product_id,
                    Review.parent_id.is_(None),
                    Review.rating.isnot(None),
                )
                .first()
            )
            if already:
                raise HTTPException(status_code=400, detail="You have already rated this product")

    r = Review(user_id=user.id, product_id=product_id, parent_id=parent_id,
               rating=payload.rating, content=content)
    db.add(r)
    db.commit()
    db.refresh(r)
    log.info("review %s added to product %s by user %s", r.id, product_id, user.id)
    return r


def get_review(db: Session, review_id: int) -> Review:
    r = db.get(Review, review_id)
    if r is None:
        raise HTTPException(status_code=404, detail="Review not found")
    return r


def _check_owner(actor: User, r: Review) -> None:
    if r.user_id != actor.id and not actor.is_admin:
        raise HTTPException(status_code=403, detail="You can only change your own reviews")


def update_review(db: Session, actor: User, r: Review, payload) -> Review:
    _check_owner(actor, r)
    fields = payload.model_fields_set
    rating = payload.rating if "rating" in fields else r.rating
    content = ((payload.content or "").strip() or None) if "content" in fields else r.content

    if r.parent_id is not None:
        if rating is not None:
            raise HTTPException(status_code=400, detail="Replies cannot carry a rating")
        if not content:
            raise HTTPException(status_code=400, detail="Reply content is required")
    else:
        if rating is None and not content:
            raise HTTPException(status_code=400, detail="Content is required when no rating is given")
        if rating is not None and r.rating is None:
            already = (
                db.query(Review)
                .filter(
                    Review.user_id == r.user_id,
                    Review.product_id == r.product_id,
                    Review.parent_id.is_(None),
                    Review.rating.isnot(None),
                    Review.id != r.id,
                )
                .first()
            )
            if already:
                raise HTTPException(status_code=400, detail="You have already rated this product")

    r.rating = rating
    r.content = content
    db.commit()
    db.refresh(r)
    return r


def delete_review(db: Session, actor: User, r: Review) -> None:
    _check_owner(actor, r)
    rid = r.id
    db.delete(r)
    db.commit()
    log.info("review %s deleted by user %s", rid, actor.id)


def user_reviews(db: Session, user: User) -> List[Review]:
    return (
        db.query(Review)
        .filter(Review.user_id == user.id, Review.parent_id.is_(None))
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


def all_reviews(db: Session, product_id: Optional[int] = None) -> List[Review]:
    qry = db.query(Review)
    if product_id is not None:
        qry = qry.filter(Review.product_id == product_id)
    return qry.order_by(Review.created_at.desc(), Review.id.desc()).all()
