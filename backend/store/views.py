import logging

from django.conf import settings
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.lifecycle import RideBookingError, ForbiddenError, InvalidRequestError, NotFoundError, same_id
from .permissions import HasStoreKey
from .registry import get_table, get_rpc

logger = logging.getLogger(__name__)

FILTER_SUFFIXES = ('icontains', 'gte', 'lte')
RESERVED_PARAMS = ('order', 'limit')


class StoreAPIView(APIView):
    """
    Base view for the store surface.

    Lifecycle errors become `{"error": code, "message": text}` bodies with the
    error's status; serializer failures are reported as invalid_request.
    """
    permission_classes = (HasStoreKey, IsAuthenticated)

    def handle_exception(self, exc):
        if isinstance(exc, RideBookingError):
            logger.info("Store request rejected: %s (%s)", exc.code, exc.message)
            return Response(exc.to_dict(), status=exc.status_code)
        if isinstance(exc, ValidationError):
            error = InvalidRequestError(_first_error(exc.detail))
            payload = error.to_dict()
            payload['details'] = exc.detail
            return Response(payload, status=status.HTTP_400_BAD_REQUEST)
        return super().handle_exception(exc)


class TableListCreateView(StoreAPIView):
    """
    GET: rows of a table visible to the caller.
        ?field=value, ?field__icontains=, ?field__gte=, ?field__lte=
        ?order=-created_at,id   ?limit=20
    POST: insert a row through the table's create hook.
    """

    def get(self, request, table):
        table_def = get_table(table)
        qs = table_def.queryset(request.user)
        qs = qs.filter(**_parse_filters(table_def, request.query_params))
        qs = qs.order_by(*_parse_order(table_def, request.query_params.get('order')))
        qs = qs[:_parse_limit(request.query_params.get('limit'))]
        return Response(table_def.serializer(qs, many=True).data)

    def post(self, request, table):
        table_def = get_table(table)
        if table_def.create is None:
            raise ForbiddenError(f"Rows cannot be inserted into {table}")

        instance = table_def.create(request.user, request.data)
        return Response(table_def.serialize(instance), status=status.HTTP_201_CREATED)


class TableDetailView(StoreAPIView):
    """
    GET: one visible row.
    PATCH: update whitelisted columns of a row the caller owns.
    """

    def get(self, request, table, pk):
        table_def = get_table(table)
        return Response(table_def.serialize(_get_row(table_def, request.user, pk)))

    def patch(self, request, table, pk):
        table_def = get_table(table)
        if not table_def.update_fields:
            raise ForbiddenError(f"Rows of {table} change only through procedures")

        instance = _get_row(table_def, request.user, pk)
        if not same_id(getattr(instance, table_def.owner_field), request.user.id):
            raise ForbiddenError(f"You can only update your own {table}")

        unknown = set(request.data) - set(table_def.update_fields)
        if unknown:
            raise InvalidRequestError(f"Cannot update: {', '.join(sorted(unknown))}")

        serializer = table_def.serializer(instance, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)


class RpcView(StoreAPIView):
    """POST /api/store/rpc/<name>/ with the procedure's arguments as JSON."""

    def post(self, request, name):
        procedure = get_rpc(name)
        args = request.data if isinstance(request.data, dict) else {}
        result = procedure(request.user, args)
        logger.debug("RPC %s by user %s succeeded", name, request.user.id)
        return Response(result)


# ---------------------- helpers ----------------------

def _get_row(table_def, user, pk):
    try:
        return table_def.queryset(user).get(pk=pk)
    except (table_def.model.DoesNotExist, ValueError):
        raise NotFoundError(f"No such row in {table_def.name}")


def _parse_filters(table_def, params):
    lookups = {}
    for key, value in params.items():
        if key in RESERVED_PARAMS:
            continue
        name, _, suffix = key.partition('__')
        if name not in table_def.filter_fields or (suffix and suffix not in FILTER_SUFFIXES):
            raise InvalidRequestError(f"Cannot filter {table_def.name} by {key}")
        path = table_def.filter_fields[name]
        lookups[f"{path}__{suffix}" if suffix else path] = value
    return lookups


def _parse_order(table_def, order):
    if not order:
        return ['-created_at'] if 'created_at' in table_def.filter_fields else ['-id']

    fields = []
    for item in order.split(','):
        item = item.strip()
        name = item.lstrip('-')
        if name not in table_def.filter_fields:
            raise InvalidRequestError(f"Cannot order {table_def.name} by {name}")
        prefix = '-' if item.startswith('-') else ''
        fields.append(prefix + table_def.filter_fields[name])
    return fields


def _parse_limit(limit):
    max_size = settings.STORE_MAX_PAGE_SIZE
    if limit in (None, ''):
        return max_size
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise InvalidRequestError("limit must be a number")
    return max(1, min(value, max_size))


def _first_error(detail):
    if isinstance(detail, dict):
        for key, value in detail.items():
            message = _first_error(value)
            return message if key == 'non_field_errors' else f"{key}: {message}"
    if isinstance(detail, list) and detail:
        return _first_error(detail[0])
    return str(detail)
