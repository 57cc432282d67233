#======================================
#       >>>> SUBSCRIPTION ENDPOINTS<<<<
#======================================
# subscriptions.py
import threading
import time
from datetime import timedelta

from flask import Blueprint, request, current_app, g
from sqlalchemy.exc import SQLAlchemyError

from .modules import db
from .db import (Subscription, Payment, ManualPayment, RevokedToken, PAYMENT_METHODS, MANUAL_PAYMENT_STATUSES,
                 MANUAL_PAYMENT_MAX_MONTHS)
from .entitlements import Tier, PAID_TIERS, SUBSCRIPTION_STATUSES, utc_now
from .errors import ValidationError, NotFound, Conflict
from .helper import (send_response, get_json_body, require_fields, get_page_args, paginate, get_or_404,
                     parse_bool, login_required, admin_required)

subscriptions = Blueprint("subscriptions", __name__)

# Prices in BDT
PLANS = {
    "free": {
        "name": "Free", "type": "free", "price": 0, "duration": None,
        "features": ["Free channels", "SD/HD quality", "Ads supported"],
    },
    "basic_monthly": {
        "name": "Basic Monthly", "type": "basic", "price": 199, "duration": 30,
        "features": ["All free channels", "Selected premium channels", "HD quality"],
    },
    "basic_quarterly": {
        "name": "Basic Quarterly", "type": "basic", "price": 499, "duration": 90,
        "features": ["All free channels", "Selected premium channels", "HD quality"],
    },
    "premium_monthly": {
        "name": "Premium Monthly", "type": "premium", "price": 399, "duration": 30,
        "features": ["All channels", "FHD quality", "No ads"],
    },
    "premium_quarterly": {
        "name": "Premium Quarterly", "type": "premium", "price": 999, "duration": 90,
        "features": ["All channels", "FHD quality", "No ads"],
    },
    "premium_yearly": {
        "name": "Premium Yearly", "type": "premium", "price": 3499, "duration": 365,
        "features": ["All channels", "FHD quality", "No ads", "Priority support"],
    },
    "vip_monthly": {
        "name": "VIP Monthly", "type": "vip", "price": 599, "duration": 30,
        "features": ["All channels", "4K quality", "No ads", "Multi-device", "Priority support"],
    },
    "vip_yearly": {
        "name": "VIP Yearly", "type": "vip", "price": 5999, "duration": 365,
        "features": ["All channels", "4K quality", "No ads", "Multi-device", "Priority support"],
    },
}

COUPONS = {
    "WELCOME10": {"type": "percentage", "value": 10},
    "SAVE50": {"type": "fixed", "value": 50},
    "NEWUSER15": {"type": "percentage", "value": 15},
}

MAX_EXTENSION_DAYS = 3650


def parse_days(value, field, maximum=MAX_EXTENSION_DAYS):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        days = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be an integer")
    if not 0 < days <= maximum:
        raise ValidationError(f"{field} must be between 1 and {maximum}")
    return days


def apply_coupon(amount, coupon_code):
    """Return (discount, normalized_code). Unknown codes are rejected."""
    if not coupon_code:
        return 0, None
    code = str(coupon_code).strip().upper()
    coupon = COUPONS.get(code)
    if coupon is None:
        raise ValidationError("Invalid coupon code", errors={"coupon_code": "invalid"})
    if coupon["type"] == "percentage":
        discount = round(amount * coupon["value"] / 100, 2)
    else:
        discount = coupon["value"]
    return min(discount, amount), code

#======================================
#              >>>>SERVICES<<<<
#======================================
def ensure_subscription(user_id):
    """Current subscription, provisioning a free one when nothing is active."""
    subscription = Subscription.get_active_by_user(user_id)
    if subscription is None:
        subscription = Subscription.create_free(user_id)
        db.session.commit()
        current_app.logger.info(f"Provisioned free subscription for user={user_id}")
    return subscription


def activate_from_payment(payment):
    """New paid entitlement for a completed payment. Prior active rows are cancelled. Caller commits."""
    now = utc_now()
    Subscription.deactivate_for_user(payment.user_id)
    subscription = Subscription(
        user_id=payment.user_id,
        subscription_type=payment.subscription_type,
        status="active",
        start_date=now,
        end_date=now + timedelta(days=payment.subscription_duration),
        payment_id=payment.id,
    )
    db.session.add(subscription)
    return subscription


def complete_payment(payment, gateway_transaction_id=None, gateway_response=None):
    """Mark a payment completed and activate its subscription exactly once."""
    if payment.status == "completed":
        return Subscription.query.filter_by(payment_id=payment.id).first()
    if payment.status != "pending":
        raise Conflict(f"Payment is {payment.status} and cannot be completed")

    payment.mark_completed(gateway_transaction_id, gateway_response)
    try:
        subscription = activate_from_payment(payment)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise

    current_app.logger.info(
        f"Payment {payment.transaction_id} completed: {subscription.subscription_type} "
        f"for {payment.subscription_duration} days (user={payment.user_id})"
    )
    return subscription


def subscription_summary(subscription):
    return {
        "subscription": subscription.to_dict(),
        "is_active": subscription.is_active(),
        "days_remaining": subscription.days_remaining(),
        "has_premium_access": subscription.has_premium_access(),
    }
#----------------------------------------------------------------------
@subscriptions.route("/plans", methods=["GET"])
def get_plans():
    plans = [dict(id=plan_id, currency="BDT", **plan) for plan_id, plan in PLANS.items()]
    return send_response("Subscription plans retrieved", plans)
#----------------------------------------------------------------------
@subscriptions.route("/my-subscription", methods=["GET"])
@login_required
def my_subscription():
    subscription = ensure_subscription(g.current_user.id)
    return send_response("Subscription retrieved", subscription_summary(subscription))
#----------------------------------------------------------------------
@subscriptions.route("/subscribe", methods=["POST"])
@login_required
def subscribe():
    data = get_json_body()
    require_fields(data, "plan_id")
    user = g.current_user

    plan = PLANS.get(data["plan_id"]) if isinstance(data["plan_id"], str) else None
    if plan is None or plan["type"] == Tier.FREE.value:
        raise ValidationError("Invalid subscription plan")

    current = Subscription.get_active_by_user(user.id)
    if current and current.has_premium_access():
        raise ValidationError("You already have an active paid subscription")

    payment_method = data.get("payment_method", "bkash")
    if payment_method not in PAYMENT_METHODS or payment_method == "manual":
        raise ValidationError("Unsupported payment method")

    discount, coupon_code = apply_coupon(plan["price"], data.get("coupon_code"))
    payment = Payment(
        user_id=user.id,
        transaction_id=Payment.generate_transaction_id(),
        amount=plan["price"],
        currency="BDT",
        payment_method=payment_method,
        status="pending",
        subscription_type=plan["type"],
        subscription_duration=plan["duration"],
        discount_amount=discount,
        coupon_code=coupon_code,
    )
    db.session.add(payment)
    db.session.commit()

    current_app.logger.info(f"Payment order {payment.transaction_id} created for user={user.sid} plan={data['plan_id']}")
    return send_response("Payment order created", {
        "payment": payment.to_dict(),
        "plan": dict(id=data["plan_id"], **plan),
        "payable_amount": payment.net_amount,
    }, 201)
#----------------------------------------------------------------------
@subscriptions.route("/manual-payment", methods=["POST"])
@login_required
def create_manual_payment():
    """User reports a bKash send-money transfer. Nothing is granted until an admin confirms it."""
    data = get_json_body()
    require_fields(data, "months", "amount", "sender_number", "transaction_id")

    subscription_type = data.get("subscription_type", Tier.PREMIUM.value)
    if subscription_type not in [t.value for t in PAID_TIERS]:
        raise ValidationError("Invalid subscription type")
    months = parse_days(data["months"], "months", maximum=MANUAL_PAYMENT_MAX_MONTHS)
    try:
        amount = float(data["amount"])
    except (TypeError, ValueError):
        raise ValidationError("amount must be numeric")
    if not amount > 0:
        raise ValidationError("Amount must be positive")

    sender_number = data["sender_number"]
    transaction_id = data["transaction_id"]
    if not isinstance(sender_number, str) or not sender_number.strip():
        raise ValidationError("sender_number must be a string", errors={"sender_number": "invalid"})
    if not isinstance(transaction_id, str) or not transaction_id.strip():
        raise ValidationError("transaction_id must be a string", errors={"transaction_id": "invalid"})
    transaction_id = transaction_id.strip().upper()
    if ManualPayment.query.filter_by(transaction_id=transaction_id).first():
        raise Conflict("This transaction id has already been submitted")

    row = ManualPayment(
        user_id=g.current_user.id,
        subscription_type=subscription_type,
        months=months,
        amount=amount,
        sender_number=sender_number.strip(),
        transaction_id=transaction_id,
        status="pending",
    )
    db.session.add(row)
    db.session.commit()

    current_app.logger.info(f"Manual payment {row.transaction_id} submitted by user={g.current_user.sid}")
    return send_response("Manual payment submitted for review", row.to_dict(), 201)
#----------------------------------------------------------------------
@subscriptions.route("/cancel", methods=["POST"])
@login_required
def cancel():
    data = get_json_body(optional=True)
    subscription = Subscription.get_active_by_user(g.current_user.id)
    if subscription is None:
        raise NotFound("No active subscription")
    if subscription.subscription_type == Tier.FREE.value:
        raise ValidationError("The free plan cannot be cancelled")

    subscription.cancel(data.get("reason"))
    db.session.commit()
    current_app.logger.info(f"Subscription {subscription.id} cancelled by user={g.current_user.sid}")
    return send_response("Subscription cancelled", subscription.to_dict())
#----------------------------------------------------------------------
@subscriptions.route("/renew", methods=["POST"])
@login_required
def renew():
    data = get_json_body(optional=True)
    duration = parse_days(data.get("duration", 30), "duration")

    # Only a paid plan that is still valid can be extended; lapsed plans need a new payment
    subscription = Subscription.get_active_by_user(g.current_user.id)
    if subscription is None or not subscription.has_premium_access():
        raise NotFound("No active paid subscription to renew")

    subscription.extend(duration)
    db.session.commit()
    current_app.logger.info(f"Subscription {subscription.id} renewed for {duration} days by user={g.current_user.sid}")
    return send_response("Subscription renewed", subscription_summary(subscription))

#======================================
#               >>>>ADMIN<<<<
#======================================
@subscriptions.route("/admin/all-manual-payments", methods=["GET"])
@login_required
@admin_required
def list_manual_payments():
    page, limit = get_page_args()
    query = ManualPayment.query
    if request.args.get("status"):
        query = query.filter(ManualPayment.status == request.args["status"])

    query = query.order_by(ManualPayment.created_at.desc(), ManualPayment.id.desc())
    items, pagination = paginate(query, page, limit)
    return send_response("Manual payments retrieved", [m.to_dict() for m in items], pagination=pagination)
#----------------------------------------------------------------------
def confirm_manual_payment(manual):
    """Turn a reviewed transfer into a completed payment and its subscription."""
    payment = Payment(
        user_id=manual.user_id,
        transaction_id=Payment.generate_transaction_id(),
        gateway_transaction_id=manual.transaction_id,
        amount=manual.amount,
        currency="BDT",
        payment_method="manual",
        status="pending",
        subscription_type=manual.subscription_type,
        subscription_duration=manual.duration_days,
    )
    db.session.add(payment)
    db.session.flush()
    manual.payment_id = payment.id
    return complete_payment(payment)


@subscriptions.route("/admin/manual-payments/<int:manual_id>/status", methods=["PUT"])
@login_required
@admin_required
def review_manual_payment(manual_id):
    manual = get_or_404(ManualPayment, manual_id, "Manual payment not found")
    data = get_json_body()
    require_fields(data, "status")

    status = data["status"]
    if status not in MANUAL_PAYMENT_STATUSES or status == "pending":
        raise ValidationError("Status must be confirmed or rejected")
    if manual.status != "pending":
        raise Conflict(f"Manual payment is already {manual.status}")

    manual.status = status
    manual.reviewed_by = g.current_user.id
    manual.reviewed_at = utc_now()
    manual.note = data.get("note")
    if status == "confirmed":
        confirm_manual_payment(manual)
    else:
        db.session.commit()

    current_app.logger.info(f"Admin {g.current_user.sid} {status} manual payment {manual.transaction_id}")
    return send_response("Manual payment reviewed", manual.to_dict())
#----------------------------------------------------------------------
@subscriptions.route("/all", methods=["GET"])
@login_required
@admin_required
def list_subscriptions():
    page, limit = get_page_args()
    query = Subscription.query
    if request.args.get("status"):
        query = query.filter(Subscription.status == request.args["status"])
    if request.args.get("subscription_type"):
        query = query.filter(Subscription.subscription_type == request.args["subscription_type"])

    items, pagination = paginate(query.order_by(Subscription.created_at.desc()), page, limit)
    return send_response("Subscriptions retrieved", [s.to_dict() for s in items], pagination=pagination)
#----------------------------------------------------------------------
@subscriptions.route("/<int:subscription_id>", methods=["GET"])
@login_required
@admin_required
def get_subscription(subscription_id):
    subscription = get_or_404(Subscription, subscription_id, "Subscription not found")
    return send_response("Subscription retrieved", subscription.to_dict())
#----------------------------------------------------------------------
def _set_status(subscription, status):
    if status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")
    if status == "cancelled":
        subscription.cancel("Cancelled by admin")
    else:
        subscription.status = status


@subscriptions.route("/<int:subscription_id>", methods=["PUT"])
@login_required
@admin_required
def update_subscription(subscription_id):
    subscription = get_or_404(Subscription, subscription_id, "Subscription not found")
    data = get_json_body()

    if "subscription_type" in data:
        if data["subscription_type"] not in [t.value for t in Tier]:
            raise ValidationError("Invalid subscription type")
        subscription.subscription_type = data["subscription_type"]
        if data["subscription_type"] == Tier.FREE.value:
            subscription.end_date = None
    if "extend_days" in data:
        subscription.extend(parse_days(data["extend_days"], "extend_days"))
    if "status" in data:
        _set_status(subscription, data["status"])
    if "auto_renewal" in data:
        subscription.auto_renewal = parse_bool(data["auto_renewal"])

    db.session.commit()
    current_app.logger.info(f"Admin {g.current_user.sid} updated subscription {subscription.id}")
    return send_response("Subscription updated", subscription.to_dict())
#----------------------------------------------------------------------
@subscriptions.route("/<int:subscription_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_subscription(subscription_id):
    subscription = get_or_404(Subscription, subscription_id, "Subscription not found")
    db.session.delete(subscription)
    db.session.commit()
    return send_response("Subscription deleted")
#----------------------------------------------------------------------
@subscriptions.route("/<int:subscription_id>/status", methods=["PUT"])
@login_required
@admin_required
def update_subscription_status(subscription_id):
    subscription = get_or_404(Subscription, subscription_id, "Subscription not found")
    data = get_json_body()
    _set_status(subscription, data.get("status"))
    db.session.commit()
    return send_response("Subscription status updated", subscription.to_dict())

#=====================================
#          >>>>EXPIRY SWEEP<<<<
#=====================================
def expire_subscriptions(app):
    with app.app_context():
        try:
            count = Subscription.expire_old_subscriptions()
            purged = RevokedToken.purge_expired()
        except SQLAlchemyError:
            db.session.rollback()
            app.logger.exception("Subscription expiry sweep failed")
            return 0
        if count:
            app.logger.info(f"Expired {count} subscription(s)")
        if purged:
            app.logger.info(f"Purged {purged} revoked token(s)")
        return count


def scheduler_worker(app, interval):
    """Background worker that flips lapsed paid subscriptions to expired"""
    while True:
        expire_subscriptions(app)
        time.sleep(interval)


def init_scheduler(app):
    interval = app.config.get("SUBSCRIPTION_SWEEP_INTERVAL", 0)
    if not interval or interval <= 0:
        app.logger.info("Subscription expiry sweep disabled.")
        return None

    thread = threading.Thread(target=scheduler_worker, args=(app, interval), daemon=True)
    thread.start()
    app.logger.info(f"Subscription expiry sweep started. Will run every {interval} seconds.")
    return thread
