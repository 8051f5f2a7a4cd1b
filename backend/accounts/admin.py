from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from accounts.models import User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin panel for custom User model"""

    list_display = [
        "username",
        "email",
        "full_name",
        "department",
        "rating",
        "total_rides",
        "is_active",
    ]

    list_filter = [
        "department",
        "university_year",
        "is_active",
        "date_joined",
    ]

    search_fields = [
        "username",
        "email",
        "full_name",
        "student_id",
    ]

    ordering = ("username",)

    # Extend default Django UserAdmin fieldsets
    fieldsets = BaseUserAdmin.fieldsets + (
        (
            "Campus Profile",
            {
                "fields": (
                    "full_name",
                    "phone_number",
                    "student_id",
                    "department",
                    "university_year",
                    "bio",
                    "rating",
                    "total_rides",
                )
            },
        ),
    )

    # For create user page in admin
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        (
            "Campus Profile",
            {
                "fields": (
                    "email",
                    "full_name",
                    "phone_number",
                    "student_id",
                )
            },
        ),
    )
