from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import EmailMultiAlternatives
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string

from notifications.models import Notification, NotificationLog

logger = logging.getLogger(__name__)
User = get_user_model()


def _get_user(user_id: int) -> Optional[User]:
    try:
        return User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.warning("notifications: user %s no longer exists", user_id)
        return None


def _render(template: str, context: dict) -> str:
    """Render a template relative to the notifications app."""
    return render_to_string(template, context).strip()


def _frontend_origin() -> str:
    return (getattr(settings, "FRONTEND_ORIGIN", "") or "").rstrip("/")


def _build_email_context(extra: Optional[dict]) -> dict:
    context = {
        "site_name": getattr(settings, "SITE_NAME", "Marketplace"),
        "site_url": _frontend_origin(),
    }
    if extra:
        context.update(extra)
    return context


def _log_notification(
    channel: str,
    type_: str,
    status: str,
    *,
    user_id: int | None = None,
    to_address: str = "",
    booking_id: int | None = None,
    overstay_record_id: int | None = None,
    error: str | None = None,
) -> None:
    try:
        NotificationLog.objects.create(
            channel=channel,
            type=type_,
            status=status,
            user_id=user_id,
            to_address=to_address or "",
            booking_id=booking_id,
            overstay_record_id=overstay_record_id,
            error=error or "",
        )
    except Exception:
        logger.exception(
            "notifications: failed to persist notification log",
            extra={"channel": channel, "type": type_, "status": status},
        )


def _prepare_email_bodies(subject: str, template: str, context: dict | None) -> tuple[str, str | None]:
    context_with_brand = _build_email_context(context or {})
    context_with_brand["subject"] = subject
    body = _render(f"email/{template}", context_with_brand)
    html_body = None
    try:
        html_body = _render(f"email/{template.rsplit('.', 1)[0]}.html", context_with_brand)
    except TemplateDoesNotExist:
        html_body = None
    return body, html_body


def _send_email_logged(
    type_: str,
    *,
    to_email: str | None,
    subject: str,
    template: str,
    context: dict | None = None,
    user_id: int | None = None,
    booking_id: int | None = None,
    overstay_record_id: int | None = None,
) -> bool:
    refs = {"user_id": user_id, "booking_id": booking_id, "overstay_record_id": overstay_record_id}
    if not to_email:
        _log_notification("email", type_, NotificationLog.Status.FAILED, error="missing recipient email", **refs)
        logger.warning(
            "notifications: cannot send %s without recipient",
            type_,
            extra={"overstay_record_id": overstay_record_id},
        )
        return False

    text_body, html_body = _prepare_email_bodies(subject, template, context)
    message = EmailMultiAlternatives(
        subject=subject,
        body=text_body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        to=[to_email],
    )
    if html_body:
        message.attach_alternative(html_body, "text/html")

    try:
        message.send(fail_silently=False)
    except Exception as exc:
        logger.exception("notifications: email send failed", extra={"type": type_, **refs})
        _log_notification(
            "email",
            type_,
            NotificationLog.Status.FAILED,
            to_address=to_email,
            error=str(exc) or exc.__class__.__name__,
            **refs,
        )
        return False

    _log_notification("email", type_, NotificationLog.Status.SENT, to_address=to_email, **refs)
    return True


def _notify_in_app(
    user_id: int | None,
    type_: str,
    *,
    title: str,
    message: str,
    data: dict | None = None,
    booking_id: int | None = None,
    overstay_record_id: int | None = None,
) -> Optional[Notification]:
    if not user_id:
        return None
    refs = {"user_id": user_id, "booking_id": booking_id, "overstay_record_id": overstay_record_id}
    try:
        notification = Notification.objects.create(
            user_id=user_id,
            type=type_,
            title=title,
            message=message,
            data=data or {},
        )
    except Exception as exc:
        logger.exception("notifications: in-app notification failed", extra={"type": type_, **refs})
        _log_notification(
            "in_app", type_, NotificationLog.Status.FAILED, error=str(exc) or exc.__class__.__name__, **refs
        )
        return None
    _log_notification("in_app", type_, NotificationLog.Status.SENT, **refs)
    return notification


def _display_name(user: Optional[User]) -> str:
    if not user:
        return "Unknown"
    full_name = ""
    if hasattr(user, "get_full_name"):
        full_name = (user.get_full_name() or "").strip()
    if not full_name:
        username = getattr(user, "username", "") or ""
        if username:
            return username
        return str(user)
    return full_name


def _format_cents(cents: int | None) -> str:
    amount = (Decimal(int(cents or 0)) / Decimal("100")).quantize(Decimal("0.01"))
    return f"${amount:,}"


def _format_date(value) -> str:
    if not value:
        return "N/A"
    return value.strftime("%b %d, %Y")


def _load_overstay(record_id: int):
    from overstays.models import OverstayRecord

    try:
        return OverstayRecord.objects.select_related(
            "booking",
            "booking__renter",
            "booking__listing",
            "booking__listing__location",
            "booking__listing__location__manager",
        ).get(pk=record_id)
    except OverstayRecord.DoesNotExist:
        logger.warning("notifications: overstay record %s no longer exists", record_id)
        return None


def _overstay_context(record) -> dict:
    booking = record.booking
    listing = booking.listing
    location = listing.location
    return {
        "record_id": record.pk,
        "booking_id": booking.pk,
        "listing_title": listing.title,
        "location_name": location.name,
        "renter_name": _display_name(booking.renter),
        "renter_email": booking.renter.email,
        "end_date": _format_date(record.end_date),
        "days_overdue": record.days_overdue,
        "grace_period_ends_at": _format_date(record.grace_period_ends_at),
        "penalty_display": _format_cents(record.calculated_penalty_cents),
        "amount_display": _format_cents(record.penalty_amount_cents),
    }


def _mark_sent(record_id: int, kind: str, recipient_id: int | None, **extra) -> None:
    from overstays.history import record_notification_sent

    try:
        record_notification_sent(record_id, kind=kind, recipient_id=recipient_id, extra=extra or None)
    except Exception:
        logger.exception(
            "notifications: failed to note overstay notification",
            extra={"record_id": record_id, "kind": kind},
        )


@shared_task(queue="emails")
def send_overstay_detected_email(record_id: int):
    """Warn the renter that their booking ran past its end date."""
    from overstays.config import resolve_penalty_config

    record = _load_overstay(record_id)
    if record is None:
        return
    renter = record.booking.renter
    config = resolve_penalty_config(record.booking.listing)
    in_grace = record.status in ("detected", "grace_period")
    origin = _frontend_origin()
    context = _overstay_context(record)
    context.update(
        {
            "in_grace_period": in_grace,
            "grace_period_days": config.grace_period_days,
            "policy_text": config.policy_text,
            "cta_url": f"{origin}/bookings/{record.booking_id}" if origin else "",
        }
    )
    subject = (
        f"Your storage booking is {record.days_overdue} day(s) overdue"
        if in_grace
        else "Overstay penalty under review"
    )
    sent = _send_email_logged(
        "overstay_detected",
        to_email=renter.email,
        subject=subject,
        template="overstay_detected_renter.txt",
        context=context,
        user_id=renter.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    _notify_in_app(
        renter.pk,
        "overstay_detected",
        title=subject,
        message=f"Booking #{record.booking_id} ended on {context['end_date']}. Please request checkout.",
        data={"overstay_record_id": record.pk, "booking_id": record.booking_id},
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "renter_warning", renter.pk)


@shared_task(queue="emails")
def send_overstay_manager_alert_email(record_id: int):
    """Tell the location manager a penalty is waiting for review."""
    record = _load_overstay(record_id)
    if record is None:
        return
    manager = record.booking.listing.location.manager
    origin = _frontend_origin()
    context = _overstay_context(record)
    context.update(
        {
            "manager_name": _display_name(manager),
            "cta_url": f"{origin}/manager/overstays/{record.pk}" if origin else "",
        }
    )
    subject = f"Overstay penalty needs review: booking #{record.booking_id}"
    sent = _send_email_logged(
        "overstay_manager_alert",
        to_email=manager.email,
        subject=subject,
        template="overstay_manager_alert.txt",
        context=context,
        user_id=manager.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    _notify_in_app(
        manager.pk,
        "overstay_pending_review",
        title=subject,
        message=f"{context['renter_name']} is {record.days_overdue} day(s) overdue.",
        data={"overstay_record_id": record.pk, "booking_id": record.booking_id},
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "manager_alert", manager.pk)


@shared_task(queue="emails")
def send_overstay_penalty_charged_email(record_id: int):
    """Receipt-style notice after a penalty was collected."""
    record = _load_overstay(record_id)
    if record is None:
        return
    renter = record.booking.renter
    manager = record.booking.listing.location.manager
    context = _overstay_context(record)
    context.update(
        {
            "amount_display": _format_cents(record.charged_amount_cents or record.penalty_amount_cents),
            "payment_reference": record.payment_intent_id or "N/A",
        }
    )
    sent = _send_email_logged(
        "overstay_penalty_charged",
        to_email=renter.email,
        subject="Overstay penalty charged",
        template="overstay_penalty_charged.txt",
        context=context,
        user_id=renter.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    _notify_in_app(
        manager.pk,
        "overstay_penalty_collected",
        title=f"Overstay penalty collected for booking #{record.booking_id}",
        message=f"{context['amount_display']} collected from {context['renter_name']}.",
        data={"overstay_record_id": record.pk, "booking_id": record.booking_id},
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "penalty_charged", renter.pk)


@shared_task(queue="emails")
def send_overstay_payment_link_email(record_id: int, checkout_url: str, reason: str):
    """Send the renter a hosted checkout link after the automatic charge failed."""
    record = _load_overstay(record_id)
    if record is None:
        return
    renter = record.booking.renter
    context = _overstay_context(record)
    context.update(
        {
            "checkout_url": checkout_url,
            "reason": reason,
            "expiry_hours": getattr(settings, "OVERSTAY_CHECKOUT_EXPIRY_HOURS", 24),
        }
    )
    sent = _send_email_logged(
        "overstay_payment_link",
        to_email=renter.email,
        subject="Action required: pay your overstay penalty",
        template="overstay_payment_link.txt",
        context=context,
        user_id=renter.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    _notify_in_app(
        renter.pk,
        "overstay_payment_required",
        title="Overstay penalty payment required",
        message=f"Please pay {context['amount_display']} using the link we emailed you.",
        data={"overstay_record_id": record.pk, "checkout_url": checkout_url},
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "payment_link", renter.pk)


@shared_task(queue="emails")
def send_overstay_escalation_admin_email(record_id: int, reason: str):
    """Alert every active staff account about an escalated penalty."""
    record = _load_overstay(record_id)
    if record is None:
        return
    context = _overstay_context(record)
    context["reason"] = reason
    admins = User.objects.filter(is_staff=True, is_active=True).exclude(email="")
    delivered = 0
    for admin in admins:
        if _send_email_logged(
            "overstay_escalation_admin",
            to_email=admin.email,
            subject=f"Overstay penalty escalated: record #{record.pk}",
            template="overstay_escalation_admin.txt",
            context=context,
            user_id=admin.pk,
            booking_id=record.booking_id,
            overstay_record_id=record.pk,
        ):
            delivered += 1
    if delivered:
        _mark_sent(record.pk, "escalation_admin", None, recipients=delivered)
    else:
        logger.warning("notifications: no staff recipients for overstay escalation %s", record.pk)


@shared_task(queue="emails")
def send_overstay_refund_email(record_id: int, amount_cents: int):
    record = _load_overstay(record_id)
    if record is None:
        return
    renter = record.booking.renter
    context = _overstay_context(record)
    context.update(
        {
            "amount_display": _format_cents(amount_cents),
            "fully_refunded": record.status == "resolved",
        }
    )
    sent = _send_email_logged(
        "overstay_refund",
        to_email=renter.email,
        subject="Your overstay penalty was refunded",
        template="overstay_refund.txt",
        context=context,
        user_id=renter.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "refund", renter.pk, amount_cents=amount_cents)


@shared_task(queue="emails")
def send_overstay_penalty_waived_email(record_id: int):
    record = _load_overstay(record_id)
    if record is None:
        return
    renter = record.booking.renter
    sent = _send_email_logged(
        "overstay_penalty_waived",
        to_email=renter.email,
        subject="Your overstay penalty was waived",
        template="overstay_penalty_waived.txt",
        context=_overstay_context(record),
        user_id=renter.pk,
        booking_id=record.booking_id,
        overstay_record_id=record.pk,
    )
    if sent:
        _mark_sent(record.pk, "penalty_waived", renter.pk)
