# serializers.py
from rest_framework import serializers
from django.contrib.auth.password_validation import validate_password

from .models import User


class UserSerializer(serializers.ModelSerializer):
    """Household member as seen by other members."""
    user_id = serializers.CharField(source='username', read_only=True)
    role_display = serializers.CharField(source='get_role_display', read_only=True)

    class Meta:
        model = User
        fields = [
            'user_id', 'name', 'role', 'role_display', 'age', 'birth_date',
            'connect', 'dispenser_id', 'kit_id', 'date_joined'
        ]
        read_only_fields = fields


class SignupSerializer(serializers.Serializer):
    """
    Sign up a parent, or a child joining a parent's household.

    Children must give ``parent_connect``; parents must not.
    """
    user_id = serializers.CharField(max_length=150)
    password = serializers.CharField(write_only=True, style={'input_type': 'password'})
    name = serializers.CharField(max_length=100)
    role = serializers.ChoiceField(choices=User.Role.choices, default=User.Role.PARENT)
    parent_connect = serializers.CharField(max_length=50, required=False, allow_blank=True)
    age = serializers.IntegerField(min_value=0, max_value=150, required=False, allow_null=True)
    birth_date = serializers.DateField(required=False, allow_null=True)

    def validate_password(self, value):
        validate_password(value)
        return value

    def validate(self, data):
        if data.get('role') == User.Role.CHILD and not data.get('parent_connect'):
            raise serializers.ValidationError({'parent_connect': "A child account needs the parent's connect code."})
        if data.get('role') == User.Role.PARENT and data.get('parent_connect'):
            raise serializers.ValidationError({'parent_connect': "Parent accounts open their own household."})
        return data


class ChildUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)
    age = serializers.IntegerField(min_value=0, max_value=150, required=False)
    birth_date = serializers.DateField(required=False)


class PairDispenserSerializer(serializers.Serializer):
    dispenser_id = serializers.CharField(max_length=50)


class PairKitSerializer(serializers.Serializer):
    kit_id = serializers.CharField(max_length=45)
