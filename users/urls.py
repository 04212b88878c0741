# urls.py
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import AccountViewSet, MemberViewSet

router = DefaultRouter()
router.register(r'members', MemberViewSet, basename='member')

urlpatterns = [
    path('', include(router.urls)),

    path('signup/', AccountViewSet.as_view({'post': 'signup'}), name='signup'),
    path('me/', AccountViewSet.as_view({'get': 'me'}), name='current-user'),
    path('pair-dispenser/', AccountViewSet.as_view({'post': 'pair_dispenser'}), name='pair-dispenser'),
    path('pair-kit/', AccountViewSet.as_view({'post': 'pair_kit'}), name='pair-kit'),
    path('verify-uid/<str:uid>/', AccountViewSet.as_view({'get': 'verify_uid'}), name='verify-uid'),
    path(
        'dispensers/<str:dispenser_id>/members/',
        AccountViewSet.as_view({'get': 'dispenser_members'}), name='dispenser-members'
    ),
]
