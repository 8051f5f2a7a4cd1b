"""
Table registry for the hosted store.

Each public table maps to a model, the serializer that shapes its rows, a
row-level visibility rule (as a queryset filter for REST reads and as a
predicate over serialized rows for change-feed events) and its write policy.
Writes that change lifecycle state are routed to services.booking_lifecycle;
the generic PATCH only ever touches whitelisted columns.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from django.db.models import Q

from accounts.models import User
from accounts.serializers import UserSerializer
from common.lifecycle import RideStatus, InvalidRequestError, NotFoundError, same_id
from notifications.models import Notification
from notifications.serializers import NotificationSerializer
from rides.models import Ride, Booking, LiveRide, Review
from rides.serializers import (
    RideSerializer,
    RideCreateSerializer,
    BookingSerializer,
    BookingCreateSerializer,
    LiveRideSerializer,
    ReviewSerializer,
    ReviewCreateSerializer,
)
from services import booking_lifecycle


@dataclass(frozen=True)
class Table:
    name: str
    model: Any
    serializer: Any
    # user -> Q applied to every REST read
    visible: Callable[[Any], Q]
    # (serialized row, user id) -> bool, used by the change feed
    row_visible: Callable[[Dict[str, Any], Any], bool]
    # public filter name -> ORM lookup path
    filter_fields: Dict[str, str] = field(default_factory=dict)
    create: Optional[Callable[[Any, Dict[str, Any]], Any]] = None
    update_fields: Tuple[str, ...] = ()
    owner_field: Optional[str] = None
    select_related: Tuple[str, ...] = ()

    def queryset(self, user):
        qs = self.model.objects.filter(self.visible(user))
        if self.select_related:
            qs = qs.select_related(*self.select_related)
        return qs

    def serialize(self, instance) -> Dict[str, Any]:
        return dict(self.serializer(instance).data)


# ---------------------- create hooks ----------------------

def _create_ride(user, data):
    serializer = RideCreateSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    return booking_lifecycle.create_ride(user, serializer.validated_data)


def _create_booking(user, data):
    serializer = BookingCreateSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    payload = serializer.validated_data
    return booking_lifecycle.request_booking(
        user,
        payload['ride_id'],
        seats_requested=payload['seats_requested'],
        pickup_location=payload.get('pickup_location', ''),
        message=payload.get('message', ''),
    )


def _create_review(user, data):
    serializer = ReviewCreateSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    payload = serializer.validated_data
    return booking_lifecycle.submit_review(
        user,
        payload['ride_id'],
        payload['reviewee_id'],
        payload['rating'],
        comment=payload.get('comment', ''),
    )


def _everyone(user):
    return Q()


TABLES = {
    'rides': Table(
        name='rides',
        model=Ride,
        serializer=RideSerializer,
        visible=lambda user: Q(status=RideStatus.ACTIVE) | Q(driver=user),
        row_visible=lambda row, uid: row.get('status') == RideStatus.ACTIVE or same_id(row.get('driver_id'), uid),
        filter_fields={
            'id': 'id',
            'driver_id': 'driver_id',
            'status': 'status',
            'origin_name': 'origin_name',
            'destination_name': 'destination_name',
            'departure_time': 'departure_time',
            'available_seats': 'available_seats',
            'price_per_seat': 'price_per_seat',
            'ride_type': 'ride_type',
            'created_at': 'created_at',
        },
        create=_create_ride,
        select_related=('driver',),
    ),
    'bookings': Table(
        name='bookings',
        model=Booking,
        serializer=BookingSerializer,
        visible=lambda user: Q(passenger=user) | Q(ride__driver=user),
        row_visible=lambda row, uid: same_id(row.get('passenger_id'), uid) or same_id(row.get('driver_id'), uid),
        filter_fields={
            'id': 'id',
            'ride_id': 'ride_id',
            'driver_id': 'ride__driver_id',
            'passenger_id': 'passenger_id',
            'status': 'status',
            'created_at': 'created_at',
        },
        create=_create_booking,
        select_related=('ride',),
    ),
    'live_rides': Table(
        name='live_rides',
        model=LiveRide,
        serializer=LiveRideSerializer,
        visible=lambda user: Q(driver=user) | Q(passenger=user),
        row_visible=lambda row, uid: same_id(row.get('driver_id'), uid) or same_id(row.get('passenger_id'), uid),
        filter_fields={
            'id': 'id',
            'ride_id': 'ride_id',
            'booking_id': 'booking_id',
            'driver_id': 'driver_id',
            'passenger_id': 'passenger_id',
            'ride_status': 'ride_status',
            'created_at': 'created_at',
        },
    ),
    'notifications': Table(
        name='notifications',
        model=Notification,
        serializer=NotificationSerializer,
        visible=lambda user: Q(user=user),
        row_visible=lambda row, uid: same_id(row.get('user_id'), uid),
        filter_fields={
            'id': 'id',
            'user_id': 'user_id',
            'is_read': 'is_read',
            'type': 'type',
            'created_at': 'created_at',
        },
        update_fields=('is_read',),
        owner_field='user_id',
    ),
    'reviews': Table(
        name='reviews',
        model=Review,
        serializer=ReviewSerializer,
        visible=_everyone,
        row_visible=lambda row, uid: True,
        filter_fields={
            'id': 'id',
            'ride_id': 'ride_id',
            'reviewer_id': 'reviewer_id',
            'reviewee_id': 'reviewee_id',
            'rating': 'rating',
            'created_at': 'created_at',
        },
        create=_create_review,
    ),
    'profiles': Table(
        name='profiles',
        model=User,
        serializer=UserSerializer,
        visible=_everyone,
        row_visible=lambda row, uid: True,
        filter_fields={
            'id': 'id',
            'email': 'email',
            'full_name': 'full_name',
            'department': 'department',
            'rating': 'rating',
        },
        update_fields=('full_name', 'phone_number', 'student_id', 'department', 'university_year', 'bio'),
        owner_field='id',
    ),
}


def get_table(name: str) -> Table:
    try:
        return TABLES[name]
    except KeyError:
        raise NotFoundError(f"Unknown table: {name}")


def table_for_model(model) -> Optional[Table]:
    for table in TABLES.values():
        if table.model is model:
            return table
    return None


# ---------------------- RPC ----------------------

def _require(args: Dict[str, Any], name: str):
    value = args.get(name)
    if value in (None, ""):
        raise InvalidRequestError(f"Missing argument: {name}")
    return value


def _rpc_respond_to_booking(user, args):
    result = booking_lifecycle.respond_to_booking(
        user,
        _require(args, 'booking_id'),
        _require(args, 'decision'),
        verification_code=args.get('verification_code'),
    )
    return {
        'booking': BookingSerializer(result.booking).data,
        'ride': RideSerializer(result.ride).data,
        'live_ride': LiveRideSerializer(result.live_ride).data if result.live_ride else None,
        'verification_code': result.verification_code,
        'message': result.message,
    }


def _rpc_cancel_booking(user, args):
    booking = booking_lifecycle.cancel_booking(user, _require(args, 'booking_id'))
    return {'booking': BookingSerializer(booking).data}


def _rpc_cancel_ride(user, args):
    ride = booking_lifecycle.cancel_ride(user, _require(args, 'ride_id'))
    return {'ride': RideSerializer(ride).data}


def _rpc_advance_live_ride(user, args):
    live_ride = booking_lifecycle.advance_live_ride(
        user,
        _require(args, 'live_ride_id'),
        _require(args, 'next_status'),
    )
    return {'live_ride': LiveRideSerializer(live_ride).data}


RPCS = {
    'respond_to_booking': _rpc_respond_to_booking,
    'cancel_booking': _rpc_cancel_booking,
    'cancel_ride': _rpc_cancel_ride,
    'advance_live_ride': _rpc_advance_live_ride,
}


def get_rpc(name: str):
    try:
        return RPCS[name]
    except KeyError:
        raise NotFoundError(f"Unknown procedure: {name}")
