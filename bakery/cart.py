# bakery/cart.py
"""Server-side cart. Every mutation returns the caller's fresh cart."""
import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session

from .models import CartItem, Product, User

log = logging.getLogger("bakery.cart")


def cart_items(db: Session, user: User):
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id)
        .order_by(CartItem.created_at.asc(), CartItem.id.asc())
        .all()
    )


def cart_view(db: Session, user: User) -> dict:
    items = []
    total = 0.0
    count = 0
    for ci in cart_items(db, user):
        subtotal = round(ci.product.price * ci.quantity, 2)
        total += subtotal
        count += ci.quantity
        items.append({
            "id": ci.id,
            "product_id": ci.product_id,
            "quantity": ci.quantity,
            "subtotal": subtotal,
            "product": ci.product,
        })
    return {"items": items, "total": round(total, 2), "item_count": count}


def _sellable_product(db: Session, product_id: int) -> Product:
    pr = db.get(Product, product_id)
    if pr is None or pr.is_deleted:
        raise HTTPException(status_code=404, detail="Product not found")
    return pr


def _check_stock(pr: Product, quantity: int) -> None:
    if quantity > pr.stock:
        raise HTTPException(
            status_code=400,
            detail=f"Only {pr.stock} of '{pr.name}' left in stock",
        )


def add_item(db: Session, user: User, product_id: int, quantity: int) -> dict:
    pr = _sellable_product(db, product_id)
    ci = (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id, CartItem.product_id == pr.id)
        .first()
    )
    wanted = quantity + (ci.quantity if ci else 0)
    _check_stock(pr, wanted)
    if ci:
        ci.quantity = wanted
    else:
        db.add(CartItem(user_id=user.id, product_id=pr.id, quantity=quantity))
    db.commit()
    return cart_view(db, user)


def _set_quantity(db: Session, user: User, ci: CartItem, quantity: int) -> dict:
    _check_stock(ci.product, quantity)
    ci.quantity = quantity
    db.commit()
    return cart_view(db, user)


def _line_by_product(db: Session, user: User, product_id: int) -> CartItem:
    ci = (
        db.query(CartItem)
        .filter(CartItem.user_id == user.id, CartItem.product_id == product_id)
        .first()
    )
    if ci is None:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return ci


def _line_by_id(db: Session, user: User, item_id: int) -> CartItem:
    ci = db.get(CartItem, item_id)
    if ci is None or ci.user_id != user.id:
        raise HTTPException(status_code=404, detail="Item not in cart")
    return ci


def update_product_quantity(db: Session, user: User, product_id: int, quantity: int) -> dict:
    return _set_quantity(db, user, _line_by_product(db, user, product_id), quantity)


def update_item_quantity(db: Session, user: User, item_id: int, quantity: int) -> dict:
    return _set_quantity(db, user, _line_by_id(db, user, item_id), quantity)


def remove_product(db: Session, user: User, product_id: int) -> dict:
    db.delete(_line_by_product(db, user, product_id))
    db.commit()
    return cart_view(db, user)


def remove_item(db: Session, user: User, item_id: int) -> dict:
    db.delete(_line_by_id(db, user, item_id))
    db.commit()
    return cart_view(db, user)


def clear(db: Session, user: User, commit: bool = True) -> None:
    n = db.query(CartItem).filter(CartItem.user_id == user.id).delete(synchronize_session=False)
    if commit:
        db.commit()
    log.debug("cleared %s cart lines for user %s", n, user.id)
