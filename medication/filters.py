# medication/filters.py
from django_filters import rest_framework as filters
from .models import DoseHistory


class DoseHistoryFilter(filters.FilterSet):
    start_date = filters.DateFilter(field_name='dose_date', lookup_expr='gte')
    end_date = filters.DateFilter(field_name='dose_date', lookup_expr='lte')

    class Meta:
        model = DoseHistory
        fields = ['item_id', 'status', 'time_of_day', 'start_date', 'end_date']
