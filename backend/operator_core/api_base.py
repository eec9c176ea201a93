from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView


class OperatorThrottleMixin:
    throttle_scope = "operator"
    throttle_classes = [ScopedRateThrottle]


class OperatorAPIView(OperatorThrottleMixin, APIView):
    """Base API view for operator endpoints with scoped throttling."""

    pass


def service_response(result, *, success_status: int = 200, **extra) -> Response:
    """
    Render a service result as the ``{"success": ..., "error": ...}`` envelope.

    Failures use the status code the service attached to the result.
    """
    payload = result.as_payload()
    payload.update(extra)
    if result.success:
        return Response(payload, status=success_status)
    return Response(payload, status=result.http_status)
