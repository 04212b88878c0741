# users/views.py
import logging

from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema

from dosemate.exceptions import NotFound

from .models import User
from .permissions import IsHouseholdMember, IsParent
from .serializers import (
    ChildUpdateSerializer, PairDispenserSerializer, PairKitSerializer,
    SignupSerializer, UserSerializer
)
from .services import household

logger = logging.getLogger(__name__)


class AccountViewSet(viewsets.ViewSet):
    """Signup, the current account and hardware pairing."""

    def get_permissions(self):
        if self.action == 'signup':
            return [AllowAny()]
        if self.action == 'pair_dispenser':
            return [IsAuthenticated(), IsHouseholdMember(), IsParent()]
        if self.action in ('pair_kit', 'verify_uid', 'dispenser_members'):
            return [IsAuthenticated(), IsHouseholdMember()]
        return [IsAuthenticated()]

    @swagger_auto_schema(
        operation_description="Sign up a parent (new household) or a child (joins parent_connect)",
        request_body=SignupSerializer,
        responses={201: UserSerializer}
    )
    @action(detail=False, methods=['post'])
    def signup(self, request):
        serializer = SignupSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data['role'] == User.Role.PARENT:
            user, connect = household.create_parent(
                data['user_id'], data['password'], data['name'],
                age=data.get('age'), birth_date=data.get('birth_date')
            )
        else:
            user = household.create_child(
                data['user_id'], data['password'], data['name'], data['parent_connect'],
                age=data.get('age'), birth_date=data.get('birth_date')
            )
            connect = user.connect

        return Response({
            'user': UserSerializer(user).data,
            'connect': connect,
        }, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def me(self, request):
        return Response(UserSerializer(request.user).data)

    @swagger_auto_schema(request_body=PairDispenserSerializer)
    @action(detail=False, methods=['post'], url_path='pair-dispenser')
    def pair_dispenser(self, request):
        """Bind a dispenser to every member of the caller's household."""
        serializer = PairDispenserSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispenser_id = serializer.validated_data['dispenser_id']

        updated = household.pair_dispenser(request.user, dispenser_id)
        return Response({'dispenser_id': dispenser_id, 'members_updated': updated})

    @swagger_auto_schema(request_body=PairKitSerializer)
    @action(detail=False, methods=['post'], url_path='pair-kit')
    def pair_kit(self, request):
        serializer = PairKitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = household.pair_daily_kit(request.user, serializer.validated_data['kit_id'])
        return Response(UserSerializer(user).data)

    @action(detail=False, methods=['get'], url_path=r'verify-uid/(?P<uid>[^/.]+)')
    def verify_uid(self, request, uid=None):
        """Resolve a uid scanned from a daily kit or dispenser."""
        result = household.verify_uid(uid)
        if result['type'] == 'kit':
            user = result.pop('user')
            if user.connect != request.user.connect:
                logger.warning(f"User {request.user.username} scanned kit {uid} of another household")
                return Response({'confirmed': True, 'type': 'kit', 'same_household': False})
            result['user'] = UserSerializer(user).data
        elif result['type'] == 'dispenser':
            result['same_household'] = result['connect'] == request.user.connect
            if not result['same_household']:
                result.pop('connect')
        return Response(result)

    @action(detail=False, methods=['get'], url_path=r'dispensers/(?P<dispenser_id>[^/.]+)/members')
    def dispenser_members(self, request, dispenser_id=None):
        """Users sharing the caller's paired dispenser."""
        if request.user.dispenser_id != dispenser_id:
            raise NotFound(f"Dispenser {dispenser_id} is not paired with your household.")
        members = household.list_dispenser_members(dispenser_id)
        return Response(UserSerializer(members, many=True).data)


class MemberViewSet(viewsets.ViewSet):
    """Members of the caller's household. Children are managed by the parent."""
    permission_classes = [IsAuthenticated, IsHouseholdMember]
    lookup_field = 'user_id'
    lookup_value_regex = '[^/]+'

    def list(self, request):
        members = household.list_members(request.user)
        return Response(UserSerializer(members, many=True).data)

    def retrieve(self, request, user_id=None):
        member = household.get_household_member(request.user, user_id)
        return Response(UserSerializer(member).data)

    @swagger_auto_schema(request_body=ChildUpdateSerializer)
    def partial_update(self, request, user_id=None):
        serializer = ChildUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        child = household.update_child(request.user, user_id, **serializer.validated_data)
        return Response(UserSerializer(child).data)

    def destroy(self, request, user_id=None):
        household.remove_child(request.user, user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
