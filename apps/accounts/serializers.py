from django.contrib.auth import authenticate
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers
from rest_framework.exceptions import AuthenticationFailed

from .models import User
from .store import users


class UserProfileSerializer(serializers.ModelSerializer):
    firstName = serializers.CharField(source='first_name', required=False, allow_blank=True, max_length=150)
    lastName = serializers.CharField(source='last_name', required=False, allow_blank=True, max_length=150)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    externalBillingId = serializers.CharField(source='external_billing_id', read_only=True)

    class Meta:
        model = User
        fields = (
            'id', 'username', 'email', 'firstName', 'lastName',
            'createdAt', 'externalBillingId', 'plan', 'credits',
        )
        read_only_fields = ('id', 'username', 'plan', 'credits')

    def validate_email(self, value):
        existing = users.get_user_by_email(value)
        if existing and existing.pk != self.instance.pk:
            raise serializers.ValidationError('Email already exists')
        return value

    def update(self, instance, validated_data):
        return users.update_user(instance.pk, **validated_data)


class UserRegistrationSerializer(serializers.Serializer):
    username = serializers.CharField(max_length=150)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=6)
    confirmPassword = serializers.CharField(write_only=True, min_length=6)
    firstName = serializers.CharField(required=False, allow_blank=True, max_length=150)
    lastName = serializers.CharField(required=False, allow_blank=True, max_length=150)

    def validate_username(self, value):
        if users.get_user_by_username(value):
            raise serializers.ValidationError('Username already exists')
        return value

    def validate_email(self, value):
        if users.get_user_by_email(value):
            raise serializers.ValidationError('Email already exists')
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs['confirmPassword']:
            raise serializers.ValidationError({'confirmPassword': 'Passwords do not match'})
        validate_password(attrs['password'])
        return attrs

    def create(self, validated_data):
        return users.create_user(
            username=validated_data['username'],
            email=validated_data['email'],
            password=validated_data['password'],
            first_name=validated_data.get('firstName', ''),
            last_name=validated_data.get('lastName', ''),
        )


class UserLoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(write_only=True)

    def validate(self, attrs):
        user = authenticate(
            request=self.context.get('request'),
            username=attrs['username'],
            password=attrs['password'],
        )
        if user is None:
            raise AuthenticationFailed('Invalid username or password')
        attrs['user'] = user
        return attrs


class ChangePasswordSerializer(serializers.Serializer):
    currentPassword = serializers.CharField(write_only=True)
    newPassword = serializers.CharField(write_only=True, min_length=6)

    def validate_currentPassword(self, value):
        user = self.context['request'].user
        if not user.check_password(value):
            raise serializers.ValidationError('Current password is incorrect')
        return value

    def validate_newPassword(self, value):
        validate_password(value, user=self.context['request'].user)
        return value

    def save(self, **kwargs):
        user = self.context['request'].user
        user.set_password(self.validated_data['newPassword'])
        user.save(update_fields=['password'])
        return user
