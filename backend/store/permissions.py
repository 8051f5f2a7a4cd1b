# store/permissions.py
import hmac

from django.conf import settings
from rest_framework.permissions import BasePermission


class HasStoreKey(BasePermission):
    """
    Allows access only to clients sending the store's anon key in the
    `apikey` header. An empty STORE_ANON_KEY turns the check off.
    """
    message = "Missing or invalid store key"

    def has_permission(self, request, view):
        expected = getattr(settings, "STORE_ANON_KEY", "")
        if not expected:
            return True
        supplied = request.headers.get("apikey") or ""
        return hmac.compare_digest(supplied, expected)
