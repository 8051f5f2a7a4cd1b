from django.db import models
from django.db.models import Q
from django.conf import settings

from common.lifecycle import RideStatus, BookingStatus, LiveRideStatus


class Ride(models.Model):
    """A trip offered by a student driver with a fixed seat capacity and price."""

    RIDE_TYPE_CHOICES = [
        ('one-way', 'One way'),
        ('round-trip', 'Round trip'),
    ]

    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='rides_offered'
    )

    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    # Route
    origin_name = models.CharField(max_length=255)
    destination_name = models.CharField(max_length=255)
    origin_lat = models.DecimalField(max_digits=10, decimal_places=8, null=True, blank=True)
    origin_lng = models.DecimalField(max_digits=11, decimal_places=8, null=True, blank=True)
    destination_lat = models.DecimalField(max_digits=10, decimal_places=8, null=True, blank=True)
    destination_lng = models.DecimalField(max_digits=11, decimal_places=8, null=True, blank=True)
    departure_time = models.DateTimeField()

    # Capacity & pricing
    available_seats = models.IntegerField(default=1)
    price_per_seat = models.DecimalField(max_digits=10, decimal_places=2, default=0)

    # Vehicle
    car_model = models.CharField(max_length=100, blank=True)
    car_color = models.CharField(max_length=50, blank=True)
    car_license = models.CharField(max_length=20, blank=True)

    ride_type = models.CharField(max_length=20, choices=RIDE_TYPE_CHOICES, default='one-way')
    preferences = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=RideStatus.CHOICES, default=RideStatus.ACTIVE)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'rides'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=Q(available_seats__gte=0), name='ride_seats_non_negative'),
            models.CheckConstraint(condition=Q(price_per_seat__gte=0), name='ride_price_non_negative'),
        ]

    def __str__(self):
        return f"Ride #{self.id} - {self.origin_name} to {self.destination_name} ({self.status})"


class Booking(models.Model):
    """A passenger's request to occupy seats on a ride."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='bookings')
    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bookings'
    )

    seats_requested = models.PositiveIntegerField(default=1)
    total_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    pickup_location = models.CharField(max_length=255, blank=True)
    message = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=BookingStatus.CHOICES, default=BookingStatus.PENDING)
    verification_code = models.CharField(max_length=6, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at']
        constraints = [
            # At most one pending/confirmed booking per passenger per ride
            models.UniqueConstraint(
                fields=['ride', 'passenger'],
                condition=Q(status__in=list(BookingStatus.ACTIVE)),
                name='unique_active_booking'
            ),
        ]

    def __str__(self):
        return f"Booking #{self.id} - Ride {self.ride_id} - {self.passenger} ({self.status})"


class LiveRide(models.Model):
    """Real-time tracking record for a confirmed booking."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='live_rides')
    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='live_ride')
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='live_rides_as_driver'
    )
    passenger = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='live_rides_as_passenger'
    )

    verification_code = models.CharField(max_length=6, blank=True)
    ride_status = models.CharField(
        max_length=20,
        choices=LiveRideStatus.CHOICES,
        default=LiveRideStatus.CONFIRMED
    )

    # Timestamps per transition
    created_at = models.DateTimeField(auto_now_add=True)
    driver_arriving_at = models.DateTimeField(null=True, blank=True)
    arrival_time = models.DateTimeField(null=True, blank=True)
    pickup_time = models.DateTimeField(null=True, blank=True)
    in_transit_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'live_rides'
        ordering = ['-created_at']

    def __str__(self):
        return f"LiveRide #{self.id} - Booking {self.booking_id} ({self.ride_status})"


class Review(models.Model):
    """Rating left by one party of a completed trip for the other."""

    ride = models.ForeignKey(Ride, on_delete=models.CASCADE, related_name='reviews')
    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='reviews_given'
    )
    reviewee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='reviews_received'
    )

    rating = models.PositiveSmallIntegerField()
    comment = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'reviews'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(condition=Q(rating__gte=1) & Q(rating__lte=5), name='review_rating_range'),
            models.UniqueConstraint(
                fields=['ride', 'reviewer', 'reviewee'],
                name='unique_review_per_trip'
            ),
        ]

    def __str__(self):
        return f"Review #{self.id} - {self.reviewer} -> {self.reviewee} ({self.rating})"
