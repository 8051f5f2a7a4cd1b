from django.conf import settings
from django.contrib.auth import authenticate
from rest_framework import serializers

from .models import User


class UserSerializer(serializers.ModelSerializer):
    """Public profile row (the `profiles` table)."""

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "full_name",
            "phone_number",
            "student_id",
            "department",
            "university_year",
            "bio",
            "rating",
            "total_rides",
        ]
        read_only_fields = ["id", "username", "email", "rating", "total_rides"]


class LoginSerializer(serializers.Serializer):
    """Sign in with either username or e-mail."""
    username = serializers.CharField(required=False)
    email = serializers.EmailField(required=False)
    password = serializers.CharField(write_only=True)

    def validate(self, data):
        username = data.get("username")
        if not username and data.get("email"):
            match = User.objects.filter(email__iexact=data["email"]).first()
            username = match.username if match else None
        if not username:
            raise serializers.ValidationError("Username or email is required")

        user = authenticate(username=username, password=data["password"])
        if not user:
            raise serializers.ValidationError("Invalid username or password")
        return user


class RegisterSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)
    username = serializers.CharField(required=False)

    class Meta:
        model = User
        fields = [
            'username', 'password', 'email', 'full_name', 'phone_number',
            'student_id', 'department', 'university_year',
        ]
        extra_kwargs = {'email': {'required': True}}
    
    def validate_email(self, value):
        domain = settings.CAMPUS_EMAIL_DOMAIN
        if domain and not value.lower().endswith('@' + domain.lower()):
            raise serializers.ValidationError(
                f"Please use your university email (@{domain})"
            )
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("Email already exists")
        return value

    def validate(self, data):
        # Username defaults to the e-mail's local part
        if not data.get('username'):
            data['username'] = data['email'].split('@')[0]
        if User.objects.filter(username=data['username']).exists():
            raise serializers.ValidationError({'username': 'Username already exists'})
        return data
    
    def create(self, validated_data):
        password = validated_data.pop('password')
        return User.objects.create_user(password=password, **validated_data)
