from operator_core.models import OperatorAuditEvent


def request_ip_and_ua(request) -> tuple[str, str]:
    ip = (request.META.get("HTTP_X_FORWARDED_FOR") or "").split(",")[0].strip() or request.META.get(
        "REMOTE_ADDR", ""
    )
    return ip, request.META.get("HTTP_USER_AGENT", "")


def audit(
    *,
    actor,
    action,
    entity_type,
    entity_id,
    reason,
    before=None,
    after=None,
    meta=None,
    request=None,
):
    """
    Persist an operator audit event. Raises ValueError if reason is missing.
    """

    if not reason:
        raise ValueError("reason is required for audit events")

    ip, user_agent = request_ip_and_ua(request) if request is not None else ("", "")
    return OperatorAuditEvent.objects.create(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
        before_json=before,
        after_json=after,
        meta_json=meta,
        ip=ip,
        user_agent=user_agent,
    )
