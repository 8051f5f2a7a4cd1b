from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from accounts.models import User
from notifications.models import Notification
from notifications.services import notify_user
from rides.models import Booking, LiveRide, Ride
from services import booking_lifecycle

STORE_KEY = 'anon-test-key'


@override_settings(STORE_ANON_KEY=STORE_KEY)
class StoreApiTests(TestCase):
    def setUp(self):
        self.driver = User.objects.create_user(username='driver', password='pass1234', email='driver@campus.edu')
        self.passenger = User.objects.create_user(username='rider', password='pass1234', email='rider@campus.edu')
        self.other = User.objects.create_user(username='other', password='pass1234', email='other@campus.edu')
        self.ride = Ride.objects.create(
            driver=self.driver,
            title='Campus to Mall',
            origin_name='Campus',
            destination_name='Elante Mall',
            departure_time=timezone.now() + timedelta(days=1),
            available_seats=2,
            price_per_seat=Decimal('50.00'),
        )

    def client_for(self, user, key=STORE_KEY):
        client = APIClient()
        if key:
            client.credentials(HTTP_APIKEY=key)
        client.force_authenticate(user=user)
        return client

    # ---------------------- access ----------------------

    def test_missing_store_key_is_rejected(self):
        response = self.client_for(self.passenger, key=None).get('/api/store/rides/')
        self.assertEqual(response.status_code, 403)

    def test_unknown_table(self):
        response = self.client_for(self.passenger).get('/api/store/payments/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'not_found')

    # ---------------------- reads ----------------------

    def test_list_filters_and_orders_rides(self):
        Ride.objects.create(
            driver=self.other,
            title='Campus to Airport',
            origin_name='Campus',
            destination_name='Airport',
            departure_time=timezone.now() + timedelta(days=2),
            available_seats=1,
        )
        client = self.client_for(self.passenger)

        response = client.get('/api/store/rides/', {'destination_name__icontains': 'mall'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([r['id'] for r in response.json()], [self.ride.id])

        response = client.get('/api/store/rides/', {'order': 'departure_time', 'limit': 1})
        self.assertEqual(len(response.json()), 1)
        self.assertEqual(response.json()[0]['id'], self.ride.id)

    def test_cancelled_rides_visible_only_to_driver(self):
        self.ride.status = 'cancelled'
        self.ride.save()

        self.assertEqual(self.client_for(self.passenger).get('/api/store/rides/').json(), [])
        self.assertEqual(len(self.client_for(self.driver).get('/api/store/rides/').json()), 1)

    def test_unknown_filter_is_invalid(self):
        response = self.client_for(self.passenger).get('/api/store/rides/', {'password': 'x'})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_request')

    def test_bookings_visible_to_parties_only(self):
        booking_lifecycle.request_booking(self.passenger, self.ride.id)

        for user, expected in ((self.passenger, 1), (self.driver, 1), (self.other, 0)):
            response = self.client_for(user).get('/api/store/bookings/')
            self.assertEqual(len(response.json()), expected, user.username)

        row = self.client_for(self.driver).get('/api/store/bookings/', {'driver_id': self.driver.id}).json()[0]
        self.assertEqual(row['driver_id'], self.driver.id)
        self.assertEqual(row['passenger_id'], self.passenger.id)

    # ---------------------- writes ----------------------

    def test_create_ride_defaults_title(self):
        response = self.client_for(self.driver).post('/api/store/rides/', {
            'origin_name': 'Hostel',
            'destination_name': 'Bus Stand',
            'departure_time': (timezone.now() + timedelta(hours=5)).isoformat(),
            'available_seats': 3,
            'price_per_seat': '40.00',
        }, format='json')

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['title'], 'Hostel to Bus Stand')
        self.assertEqual(response.json()['driver_id'], self.driver.id)
        self.assertEqual(response.json()['status'], 'active')

    def test_create_ride_validation_error(self):
        response = self.client_for(self.driver).post('/api/store/rides/', {
            'origin_name': 'Hostel',
            'destination_name': 'Bus Stand',
            'departure_time': (timezone.now() + timedelta(hours=5)).isoformat(),
            'available_seats': 0,
        }, format='json')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'invalid_request')
        self.assertIn('available_seats', response.json()['details'])

    def test_booking_errors_map_to_status_codes(self):
        url = '/api/store/bookings/'

        response = self.client_for(self.driver).post(url, {'ride_id': self.ride.id}, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (403, 'self_booking'))

        response = self.client_for(self.passenger).post(url, {'ride_id': self.ride.id, 'seats_requested': 5}, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (409, 'capacity_exceeded'))

        response = self.client_for(self.passenger).post(url, {'ride_id': self.ride.id}, format='json')
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['status'], 'pending')
        self.assertEqual(response.json()['total_amount'], '50.00')

        response = self.client_for(self.passenger).post(url, {'ride_id': self.ride.id}, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (409, 'duplicate_booking'))

        response = self.client_for(self.passenger).post(url, {'ride_id': 4040}, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (404, 'not_found'))

    def test_bookings_cannot_be_patched(self):
        booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

        response = self.client_for(self.driver).patch(
            f'/api/store/bookings/{booking.id}/', {'status': 'confirmed'}, format='json'
        )
        self.assertEqual(response.status_code, 403)
        booking.refresh_from_db()
        self.assertEqual(booking.status, 'pending')

    def test_notification_patch_only_touches_read_flag(self):
        note = notify_user(self.passenger.id, 'Hello', 'Welcome aboard')
        client = self.client_for(self.passenger)

        response = client.patch(f'/api/store/notifications/{note.id}/', {'message': 'hacked'}, format='json')
        self.assertEqual(response.status_code, 400)

        response = client.patch(f'/api/store/notifications/{note.id}/', {'is_read': True}, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['is_read'])

        response = self.client_for(self.other).patch(
            f'/api/store/notifications/{note.id}/', {'is_read': False}, format='json'
        )
        self.assertEqual(response.status_code, 404)

    def test_profile_update_own_only(self):
        response = self.client_for(self.passenger).patch(
            f'/api/store/profiles/{self.passenger.id}/', {'department': 'ECE'}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['department'], 'ECE')

        response = self.client_for(self.passenger).patch(
            f'/api/store/profiles/{self.driver.id}/', {'department': 'ECE'}, format='json'
        )
        self.assertEqual(response.status_code, 403)

        response = self.client_for(self.passenger).patch(
            f'/api/store/profiles/{self.passenger.id}/', {'rating': '5.0'}, format='json'
        )
        self.assertEqual(response.status_code, 400)

    # ---------------------- RPC ----------------------

    def test_rpc_accept_returns_rows(self):
        booking = booking_lifecycle.request_booking(self.passenger, self.ride.id, seats_requested=2)

        response = self.client_for(self.driver).post('/api/store/rpc/respond_to_booking/', {
            'booking_id': booking.id,
            'decision': 'accept',
        }, format='json')

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['booking']['status'], 'confirmed')
        self.assertEqual(body['ride']['available_seats'], 0)
        self.assertEqual(body['live_ride']['booking_id'], booking.id)
        self.assertEqual(body['verification_code'], body['booking']['verification_code'])

    def test_rpc_errors(self):
        booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

        response = self.client_for(self.passenger).post('/api/store/rpc/respond_to_booking/', {
            'booking_id': booking.id,
            'decision': 'accept',
        }, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (403, 'forbidden'))

        response = self.client_for(self.driver).post('/api/store/rpc/respond_to_booking/', {
            'booking_id': booking.id,
        }, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (400, 'invalid_request'))

        response = self.client_for(self.driver).post('/api/store/rpc/drop_tables/', {}, format='json')
        self.assertEqual(response.status_code, 404)

    def test_rpc_advance_live_ride(self):
        booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)
        booking_lifecycle.respond_to_booking(self.driver, booking.id, 'accept')
        live_ride = LiveRide.objects.get(booking=booking)
        client = self.client_for(self.driver)

        response = client.post('/api/store/rpc/advance_live_ride/', {
            'live_ride_id': live_ride.id,
            'next_status': 'in_transit',
        }, format='json')
        self.assertEqual((response.status_code, response.json()['error']), (409, 'invalid_transition'))

        response = client.post('/api/store/rpc/advance_live_ride/', {
            'live_ride_id': live_ride.id,
            'next_status': 'driver_arriving',
        }, format='json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['live_ride']['ride_status'], 'driver_arriving')

    def test_rpc_cancel_booking(self):
        booking = booking_lifecycle.request_booking(self.passenger, self.ride.id)

        response = self.client_for(self.passenger).post(
            '/api/store/rpc/cancel_booking/', {'booking_id': booking.id}, format='json'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Booking.objects.get(id=booking.id).status, 'cancelled')
        self.assertTrue(Notification.objects.filter(user=self.driver, title='Booking Cancelled').exists())
