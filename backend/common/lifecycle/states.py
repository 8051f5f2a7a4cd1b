"""Status vocabularies for rides, bookings and live rides."""


class RideStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    CHOICES = [
        (ACTIVE, "Active"),
        (COMPLETED, "Completed"),
        (CANCELLED, "Cancelled"),
    ]


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    # A passenger holds at most one booking in these states per ride
    ACTIVE = (PENDING, CONFIRMED)

    CHOICES = [
        (PENDING, "Pending"),
        (CONFIRMED, "Confirmed"),
        (DECLINED, "Declined"),
        (CANCELLED, "Cancelled"),
        (COMPLETED, "Completed"),
    ]


class LiveRideStatus:
    CONFIRMED = "confirmed"
    DRIVER_ARRIVING = "driver_arriving"
    ARRIVED = "arrived"
    PICKUP_COMPLETE = "pickup_complete"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"

    SEQUENCE = (
        CONFIRMED,
        DRIVER_ARRIVING,
        ARRIVED,
        PICKUP_COMPLETE,
        IN_TRANSIT,
        COMPLETED,
    )
    OPEN = SEQUENCE[:-1]

    CHOICES = [
        (CONFIRMED, "Confirmed"),
        (DRIVER_ARRIVING, "Driver arriving"),
        (ARRIVED, "Driver arrived"),
        (PICKUP_COMPLETE, "Pickup complete"),
        (IN_TRANSIT, "In transit"),
        (COMPLETED, "Completed"),
    ]

    # Timestamp column stamped when the live ride enters each status
    TIMESTAMP_FIELDS = {
        DRIVER_ARRIVING: "driver_arriving_at",
        ARRIVED: "arrival_time",
        PICKUP_COMPLETE: "pickup_time",
        IN_TRANSIT: "in_transit_at",
        COMPLETED: "completed_at",
    }


DECISIONS = {
    "accept": BookingStatus.CONFIRMED,
    "confirm": BookingStatus.CONFIRMED,
    "confirmed": BookingStatus.CONFIRMED,
    "decline": BookingStatus.DECLINED,
    "declined": BookingStatus.DECLINED,
}
