#======================================
#            >>>>PAYMENT ENDPOINTS<<<<
#======================================
# payment.py
import hmac
import hashlib

from flask import Blueprint, request, current_app, g

from .modules import db, limiter
from .db import Payment, Subscription, PAYMENT_METHODS, PAYMENT_STATUSES, SUBSCRIPTION_DURATIONS
from .entitlements import PAID_TIERS
from .errors import ValidationError, AuthenticationError, Forbidden, NotFound, Conflict
from .helper import (send_response, get_json_body, require_fields, get_page_args, paginate, get_or_404,
                     login_required, admin_required)
from .subscriptions import apply_coupon, complete_payment

payment = Blueprint("payment", __name__)

GATEWAY_METHODS = tuple(m for m in PAYMENT_METHODS if m != "manual")


def apply_status(payment_row, status, data):
    """Shared by the admin endpoint and the gateway webhook."""
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(PAYMENT_STATUSES)}")

    if status == "completed":
        complete_payment(payment_row, data.get("gateway_transaction_id"), data.get("gateway_response"))
        return payment_row

    if status == "refunded":
        try:
            refund_amount = None if data.get("refund_amount") is None else float(data["refund_amount"])
        except (TypeError, ValueError):
            raise ValidationError("refund_amount must be numeric")
        payment_row.process_refund(refund_amount, data.get("refund_reason"))
        subscription = Subscription.query.filter_by(payment_id=payment_row.id, status="active").first()
        if subscription:
            subscription.cancel("Payment refunded")
    elif status == "failed":
        if payment_row.status != "pending":
            raise Conflict(f"Payment is {payment_row.status} and cannot fail")
        payment_row.mark_failed(data.get("failure_reason"), data.get("gateway_response"))
    elif status == "cancelled":
        if payment_row.status != "pending":
            raise Conflict(f"Payment is {payment_row.status} and cannot be cancelled")
        payment_row.status = "cancelled"
    elif payment_row.status != status:
        raise Conflict("A payment cannot return to pending")

    db.session.commit()
    current_app.logger.info(f"Payment {payment_row.transaction_id} -> {payment_row.status}")
    return payment_row
#----------------------------------------------------------------------
@payment.route("/create", methods=["POST"])
@login_required
def create_payment():
    data = get_json_body()
    require_fields(data, "subscription_type", "subscription_duration", "payment_method", "amount")

    if data["subscription_type"] not in [t.value for t in PAID_TIERS]:
        raise ValidationError("Invalid subscription type")
    try:
        duration = int(data["subscription_duration"])
        amount = float(data["amount"])
    except (TypeError, ValueError):
        raise ValidationError("subscription_duration and amount must be numeric")
    if duration not in SUBSCRIPTION_DURATIONS:
        raise ValidationError(f"subscription_duration must be one of: {', '.join(map(str, SUBSCRIPTION_DURATIONS))}")
    if amount <= 0:
        raise ValidationError("Amount must be positive")
    if data["payment_method"] not in GATEWAY_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(GATEWAY_METHODS)}")

    discount, coupon_code = apply_coupon(amount, data.get("coupon_code"))
    row = Payment(
        user_id=g.current_user.id,
        transaction_id=Payment.generate_transaction_id(),
        amount=amount,
        currency=data["currency"] if data.get("currency") in ("BDT", "USD") else "BDT",
        payment_method=data["payment_method"],
        status="pending",
        subscription_type=data["subscription_type"],
        subscription_duration=duration,
        discount_amount=discount,
        coupon_code=coupon_code,
    )
    db.session.add(row)
    db.session.commit()

    current_app.logger.info(f"Payment {row.transaction_id} created by user={g.current_user.sid}")
    return send_response("Payment created", row.to_dict(), 201)
#----------------------------------------------------------------------
@payment.route("/history", methods=["GET"])
@login_required
def payment_history():
    page, limit = get_page_args()
    query = Payment.query.filter_by(user_id=g.current_user.id)
    if request.args.get("status"):
        query = query.filter(Payment.status == request.args["status"])

    items, pagination = paginate(query.order_by(Payment.created_at.desc()), page, limit)
    return send_response("Payment history retrieved", [p.to_dict() for p in items], pagination=pagination)
#----------------------------------------------------------------------
@payment.route("/<int:payment_id>", methods=["GET"])
@login_required
def get_payment(payment_id):
    row = get_or_404(Payment, payment_id, "Payment not found")
    if row.user_id != g.current_user.id and not g.current_user.has_admin_access:
        raise Forbidden("You cannot view this payment")
    return send_response("Payment retrieved", row.to_dict())
#----------------------------------------------------------------------
@payment.route("/<int:payment_id>/status", methods=["PUT"])
@login_required
@admin_required
def update_payment_status(payment_id):
    row = get_or_404(Payment, payment_id, "Payment not found")
    data = get_json_body()
    require_fields(data, "status")
    apply_status(row, data["status"], data)
    return send_response("Payment status updated", row.to_dict())
#----------------------------------------------------------------------
def _check_signature(raw_body):
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET")
    if not secret:
        if current_app.testing:
            return
        current_app.logger.warning("Payment webhook rejected: PAYMENT_WEBHOOK_SECRET is not set")
        raise AuthenticationError("Webhook signing is not configured")
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    presented = request.headers.get("X-Signature", "")
    if not hmac.compare_digest(expected.encode(), presented.encode()):
        current_app.logger.warning("Payment webhook rejected: bad signature")
        raise AuthenticationError("Invalid webhook signature")


@payment.route("/webhook", methods=["POST"])
@limiter.limit("120 per minute")
def payment_webhook():
    """Gateway callback: {transaction_id, status, gateway_transaction_id?, gateway_response?}"""
    _check_signature(request.get_data())
    data = get_json_body()
    require_fields(data, "transaction_id", "status")

    if not isinstance(data["transaction_id"], str):
        raise ValidationError("transaction_id must be a string")
    row = Payment.query.filter_by(transaction_id=data["transaction_id"]).first()
    if row is None:
        raise NotFound("Payment not found")

    current_app.logger.info(f"Webhook for {row.transaction_id}: {data['status']}")
    apply_status(row, data["status"], data)
    return send_response("Webhook processed", {"transaction_id": row.transaction_id, "status": row.status})
#----------------------------------------------------------------------
@payment.route("/admin/all", methods=["GET"])
@login_required
@admin_required
def list_payments():
    page, limit = get_page_args()
    query = Payment.query
    if request.args.get("status"):
        query = query.filter(Payment.status == request.args["status"])
    if request.args.get("payment_method"):
        query = query.filter(Payment.payment_method == request.args["payment_method"])

    items, pagination = paginate(query.order_by(Payment.created_at.desc()), page, limit)
    return send_response("Payments retrieved", [p.to_dict() for p in items], pagination=pagination)
