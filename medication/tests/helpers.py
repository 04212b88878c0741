from datetime import datetime

from medication.services import catalog
from medication.services.clock import FixedClock
from users.services import household

PASSWORD = 'Str0ng-pass-123'

# 2024-01-15 is a Monday
MONDAY = datetime(2024, 1, 15)


def monday_at(hour, minute=0):
    return FixedClock(MONDAY.replace(hour=hour, minute=minute))


def make_family(children=('child1',), child_age=10):
    """A parent with its household and the given children."""
    parent, connect = household.create_parent('parent1', PASSWORD, 'Parent')
    kids = [
        household.create_child(user_id, PASSWORD, user_id.title(), connect, age=child_age)
        for user_id in children
    ]
    return parent, kids


def add_item(parent, item_id, name=None, **kwargs):
    return catalog.add_item(parent, item_id, name or item_id.title(), **kwargs)
