from decimal import Decimal

from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Campus student profile. Every student can both offer and book rides."""

    # Basic info
    full_name = models.CharField(max_length=150, blank=True)
    phone_number = models.CharField(max_length=15, blank=True)
    student_id = models.CharField(max_length=30, blank=True)
    department = models.CharField(max_length=100, blank=True)
    university_year = models.PositiveSmallIntegerField(null=True, blank=True)
    bio = models.TextField(blank=True)

    # Reputation, recomputed from reviews
    rating = models.DecimalField(max_digits=3, decimal_places=1, default=Decimal("5.0"))
    total_rides = models.IntegerField(default=0)
    
    class Meta:
        db_table = 'users'
        
    def __str__(self):
        return self.full_name or self.username

    @property
    def display_name(self):
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split('@')[0]
        return self.username
