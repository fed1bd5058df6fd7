# bakery/orders.py
"""
Order aggregate: checkout from the cart, the status workflow and payment
reconciliation.

Checkout runs in a single transaction. Each line decrements stock with a
conditional ``UPDATE ... WHERE stock >= qty``; if any line cannot be
served the whole order is rolled back, so stock never goes negative.
"""
import logging
from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from . import cart as cart_svc
from . import vnpay
from .models import (
    ORDER_TRANSITIONS, Order, OrderItem, OrderStatus, Payment, PaymentMethod,
    PaymentStatus, Product, User,
)

log = logging.getLogger("bakery.orders")


# -----------------------------------------------------------------------------
# Checkout
# -----------------------------------------------------------------------------
def checkout(db: Session, user: User, payload) -> Order:
    lines = cart_svc.cart_items(db, user)
    if not lines:
        raise HTTPException(status_code=400, detail="Cart is empty")

    try:
        order = Order(
            user_id=user.id,
            name=payload.name,
            shipping_address=payload.shipping_address,
            phone=payload.phone,
            note=payload.note,
            payment_method=payload.payment_method.value,
            status=OrderStatus.PENDING.value,
            total_amount=0.0,
        )
        db.add(order)
        db.flush()

        total = 0.0
        for ci in lines:
            pr = ci.product
            if pr is None or pr.is_deleted:
                raise HTTPException(status_code=400, detail="A product in your cart is no longer available")
            taken = (
                db.query(Product)
                .filter(Product.id == pr.id, Product.stock >= ci.quantity)
                .update({Product.stock: Product.stock - ci.quantity}, synchronize_session=False)
            )
            if taken == 0:
                raise HTTPException(status_code=409, detail=f"Not enough stock for '{pr.name}'")
            unit = float(pr.price)
            total += unit * ci.quantity
            db.add(OrderItem(
                order_id=order.id,
                product_id=pr.id,
                product_name=pr.name,
                quantity=ci.quantity,
                price=unit,
            ))

        order.total_amount = round(total, 2)
        if order.payment_method == PaymentMethod.VNPAY.value:
            db.add(Payment(
                order_id=order.id,
                payment_method=PaymentMethod.VNPAY.value,
                amount=order.total_amount,
                status=PaymentStatus.PENDING.value,
            ))
        cart_svc.clear(db, user, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    log.info("order %s created for user %s: %s items, total %.2f",
             order.id, user.id, len(order.items), order.total_amount)
    return order


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
def orders_of(db: Session, user: User) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def all_orders(db: Session, status: Optional[str] = None) -> List[Order]:
    qry = db.query(Order)
    if status:
        qry = qry.filter(Order.status == status)
    return qry.order_by(Order.created_at.desc(), Order.id.desc()).all()


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def get_visible_order(db: Session, user: User, order_id: int) -> Order:
    order = get_order(db, order_id)
    if order.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not your order")
    return order


def latest_payment(order: Order) -> Optional[Payment]:
    return order.payments[-1] if order.payments else None


# -----------------------------------------------------------------------------
# Status workflow
# -----------------------------------------------------------------------------
def _restock(db: Session, order: Order) -> None:
    for it in order.items:
        if it.product_id is None:
            continue
        db.query(Product).filter(Product.id == it.product_id).update(
            {Product.stock: Product.stock + it.quantity}, synchronize_session=False
        )


def change_status(db: Session, actor: User, order: Order, target: str,
                  note: Optional[str] = None, client_ip: str = "127.0.0.1") -> Order:
    if not actor.is_admin:
        if order.user_id != actor.id:
            raise HTTPException(status_code=403, detail="Not your order")
        if target != OrderStatus.CANCELLED.value:
            raise HTTPException(status_code=403, detail="Customers may only cancel orders")
        if not (note or "").strip():
            raise HTTPException(status_code=400, detail="A cancellation reason is required")

    if target not in ORDER_TRANSITIONS.get(order.status, set()):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change order status from '{order.status}' to '{target}'",
        )

    try:
        if target == OrderStatus.CANCELLED.value:
            payment = latest_payment(order)
            if (order.payment_method == PaymentMethod.VNPAY.value and payment is not None
                    and payment.status == PaymentStatus.COMPLETED.value):
                refund_payment(db, payment, actor, note or "Order cancelled", client_ip, commit=False)
            elif payment is not None and payment.status == PaymentStatus.PENDING.value:
                # an issued payment URL must not settle a cancelled order
                payment.status = PaymentStatus.FAILED.value
            _restock(db, order)
        if note is not None and note.strip():
            order.note = note.strip()
        previous = order.status
        order.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    log.info("order %s: %s -> %s by user %s", order.id, previous, target, actor.id)
    return order


# -----------------------------------------------------------------------------
# Payments
# -----------------------------------------------------------------------------
def refund_payment(db: Session, payment: Payment, actor: User, reason: str,
                   client_ip: str, commit: bool = True) -> Payment:
    if payment.status != PaymentStatus.COMPLETED.value:
        raise HTTPException(status_code=400, detail="Only completed payments can be refunded")
    data = vnpay.refund(
        txn_ref=str(payment.order_id),
        amount=payment.amount,
        transaction_no=payment.transaction_no,
        transaction_date=payment.pay_date,
        created_by=actor.username,
        client_ip=client_ip,
        reason=reason,
    )
    payment.status = PaymentStatus.REFUNDED.value
    payment.refund_amount = payment.amount
    payment.refund_reason = reason
    payment.refund_transaction_no = str(data.get("vnp_TransactionNo") or "")
    if commit:
        db.commit()
        db.refresh(payment)
    return payment


def record_gateway_result(db: Session, params) -> dict:
    """
    Apply a verified VNPay callback to the order's pending payment.

    Returns ``{"order": Order|None, "code": RspCode, "success": bool}`` where
    ``code`` follows the VNPay IPN answer codes.
    """
    ref = params.get("vnp_TxnRef", "")
    order = db.get(Order, int(ref)) if ref.isdigit() else None
    if order is None:
        return {"order": None, "code": "01", "success": False}
    if order.status == OrderStatus.CANCELLED.value:
        log.warning("VNPay result for cancelled order %s ignored", order.id)
        return {"order": order, "code": "02", "success": False}

    payment = latest_payment(order)
    if payment is None:
        payment = Payment(order_id=order.id, payment_method=PaymentMethod.VNPAY.value,
                          amount=order.total_amount, status=PaymentStatus.PENDING.value)
        db.add(payment)

    success = (params.get("vnp_ResponseCode") == vnpay.SUCCESS
               and params.get("vnp_TransactionStatus", vnpay.SUCCESS) == vnpay.SUCCESS)

    if payment.status != PaymentStatus.PENDING.value:
        return {"order": order, "code": "02", "success": payment.status == PaymentStatus.COMPLETED.value}

    try:
        paid = vnpay.from_vnp_amount(params.get("vnp_Amount", "0"))
    except ValueError:
        paid = -1.0
    if vnpay.to_vnp_amount(paid) != vnpay.to_vnp_amount(order.total_amount):
        return {"order": order, "code": "04", "success": False}

    payment.transaction_no = params.get("vnp_TransactionNo")
    payment.bank_code = params.get("vnp_BankCode")
    payment.pay_date = params.get("vnp_PayDate")
    payment.response_code = params.get("vnp_ResponseCode")
    if success:
        payment.status = PaymentStatus.COMPLETED.value
        if order.status == OrderStatus.PENDING.value:
            order.status = OrderStatus.PROCESSING.value
    else:
        payment.status = PaymentStatus.FAILED.value
    db.commit()
    log.info("order %s payment %s (code %s)", order.id, payment.status, payment.response_code)
    return {"order": order, "code": "00", "success": success}
