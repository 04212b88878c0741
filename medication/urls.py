from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import DoseHistoryViewSet, MedicineViewSet, ScheduleViewSet, SlotViewSet

router = DefaultRouter()
router.register(r'catalog', MedicineViewSet, basename='medicine')
router.register(r'slots', SlotViewSet, basename='slot')
router.register(r'schedules', ScheduleViewSet, basename='schedule')
router.register(r'dose-history', DoseHistoryViewSet, basename='dose-history')

urlpatterns = [
    path('', include(router.urls)),
]
