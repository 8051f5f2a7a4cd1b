"""Tells what to show in the Django admin interface for rides app"""

from django.contrib import admin
from .models import Ride, Booking, LiveRide, Review


class BookingInline(admin.TabularInline):
    model = Booking
    extra = 0
    fields = ("passenger", "seats_requested", "total_amount", "status", "verification_code")
    readonly_fields = fields


@admin.register(Ride)
class RideAdmin(admin.ModelAdmin):
    """Ride admin"""
    list_display = ['id', 'driver', 'origin_name', 'destination_name', 'departure_time',
                    'available_seats', 'price_per_seat', 'status']
    list_filter = ['status', 'ride_type', 'departure_time']
    search_fields = ['driver__username', 'origin_name', 'destination_name']
    readonly_fields = ['created_at', 'updated_at']
    date_hierarchy = 'departure_time'
    inlines = [BookingInline]


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "ride", "passenger", "seats_requested", "total_amount", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("ride__id", "passenger__username")


@admin.register(LiveRide)
class LiveRideAdmin(admin.ModelAdmin):
    list_display = ("id", "ride", "booking", "driver", "passenger", "ride_status", "updated_at")
    list_filter = ("ride_status",)


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("id", "ride", "reviewer", "reviewee", "rating", "created_at")
    list_filter = ("rating",)
