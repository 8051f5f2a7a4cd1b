from rest_framework import serializers

from accounts.models import User
from .models import Ride, Booking, LiveRide, Review


class ProfileBasicSerializer(serializers.ModelSerializer):
    """Lite profile shown next to rides and bookings."""

    class Meta:
        model = User
        fields = ['id', 'full_name', 'email', 'phone_number', 'department', 'rating', 'total_rides']
        read_only_fields = fields


class RideSerializer(serializers.ModelSerializer):
    """Row of the `rides` table"""
    driver_id = serializers.IntegerField(read_only=True)
    driver = ProfileBasicSerializer(read_only=True)
    
    class Meta:
        model = Ride
        fields = ['id', 'driver_id', 'driver', 'title', 'description',
                  'origin_name', 'destination_name', 'origin_lat', 'origin_lng',
                  'destination_lat', 'destination_lng', 'departure_time',
                  'available_seats', 'price_per_seat', 'car_model', 'car_color',
                  'car_license', 'ride_type', 'preferences', 'status',
                  'created_at', 'updated_at']
        read_only_fields = fields


class RideCreateSerializer(serializers.ModelSerializer):
    """Serializer for offering a new ride"""
    title = serializers.CharField(required=False, allow_blank=True, max_length=200)
    available_seats = serializers.IntegerField(min_value=1, max_value=8, default=1)
    price_per_seat = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, default=0)
    
    class Meta:
        model = Ride
        fields = ['title', 'description', 'origin_name', 'destination_name',
                  'origin_lat', 'origin_lng', 'destination_lat', 'destination_lng',
                  'departure_time', 'available_seats', 'price_per_seat',
                  'car_model', 'car_color', 'car_license', 'ride_type', 'preferences']

    def validate(self, data):
        data['origin_name'] = data['origin_name'].strip()
        data['destination_name'] = data['destination_name'].strip()
        if not data['origin_name'] or not data['destination_name']:
            raise serializers.ValidationError('Origin and destination are required')
        if not (data.get('title') or '').strip():
            data['title'] = f"{data['origin_name']} to {data['destination_name']}"
        return data


class BookingSerializer(serializers.ModelSerializer):
    """Row of the `bookings` table. driver_id is the ride's driver."""
    ride_id = serializers.IntegerField(read_only=True)
    driver_id = serializers.IntegerField(source='ride.driver_id', read_only=True)
    passenger_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Booking
        fields = ['id', 'ride_id', 'driver_id', 'passenger_id', 'seats_requested',
                  'total_amount', 'pickup_location', 'message', 'status',
                  'verification_code', 'created_at', 'updated_at', 'responded_at']
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """Serializer for a passenger's booking request"""
    ride_id = serializers.IntegerField()
    seats_requested = serializers.IntegerField(default=1)
    pickup_location = serializers.CharField(required=False, allow_blank=True, max_length=255)
    message = serializers.CharField(required=False, allow_blank=True)


class LiveRideSerializer(serializers.ModelSerializer):
    """Row of the `live_rides` table"""
    ride_id = serializers.IntegerField(read_only=True)
    booking_id = serializers.IntegerField(read_only=True)
    driver_id = serializers.IntegerField(read_only=True)
    passenger_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = LiveRide
        fields = ['id', 'ride_id', 'booking_id', 'driver_id', 'passenger_id',
                  'verification_code', 'ride_status', 'created_at',
                  'driver_arriving_at', 'arrival_time', 'pickup_time',
                  'in_transit_at', 'completed_at', 'updated_at']
        read_only_fields = fields


class ReviewSerializer(serializers.ModelSerializer):
    """Row of the `reviews` table"""
    ride_id = serializers.IntegerField(read_only=True)
    reviewer_id = serializers.IntegerField(read_only=True)
    reviewee_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Review
        fields = ['id', 'ride_id', 'reviewer_id', 'reviewee_id', 'rating', 'comment', 'created_at']
        read_only_fields = fields


class ReviewCreateSerializer(serializers.Serializer):
    ride_id = serializers.IntegerField()
    reviewee_id = serializers.IntegerField()
    rating = serializers.IntegerField()
    comment = serializers.CharField(required=False, allow_blank=True)
