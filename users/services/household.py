import json
import logging
import secrets
import string

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEvent
from audit.utils import log_event
from dosemate.exceptions import Conflict, Forbidden, InvalidArgument, NotFound

from ..models import Household, User
from ..permissions import can_manage_members, can_pair_dispenser
from .locks import household_lock

logger = logging.getLogger(__name__)

CONNECT_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_connect_code():
    """
    Generate a household connect code not used by any existing household.

    Raises:
        Conflict: If every attempt collided with an existing code
    """
    length = getattr(settings, 'CONNECT_CODE_LENGTH', 8)
    attempts = getattr(settings, 'CONNECT_CODE_MAX_ATTEMPTS', 10)

    for _ in range(attempts):
        code = ''.join(secrets.choice(CONNECT_CODE_ALPHABET) for _ in range(length))
        if not Household.objects.filter(connect=code).exists():
            return code
        logger.warning(f"Connect code collision on {code}, retrying")

    logger.error(f"Could not generate a unique connect code after {attempts} attempts")
    raise Conflict("Could not generate a unique household code.")


def create_parent(user_id, password, name, age=None, birth_date=None):
    """
    Sign up a parent account and open a new household for it.

    Args:
        user_id: Login id (stored as ``username``)
        password: Raw password, hashed before saving
        name: Display name
        age: Optional age in years
        birth_date: Optional birth date

    Returns:
        tuple: (User, connect code)

    Raises:
        Conflict: If ``user_id`` is taken
    """
    if User.objects.filter(username=user_id).exists():
        raise Conflict(f"User id {user_id} is already registered.")

    connect = generate_connect_code()

    try:
        with transaction.atomic():
            Household.objects.create(connect=connect)
            user = User(
                username=user_id,
                name=name,
                role=User.Role.PARENT,
                connect=connect,
                age=age,
                birth_date=birth_date,
            )
            user.set_password(password)
            user.save()

            log_event(
                AuditEvent.EventType.CREATE, 'household', connect,
                f"Parent {user_id} opened household {connect}",
                user=user, connect=connect,
            )
    except IntegrityError:
        # Lost a race with a concurrent signup for the same id or code
        raise Conflict(f"User id {user_id} is already registered.")

    logger.info(f"Parent {user_id} signed up with household {connect}")
    return user, connect


def create_child(user_id, password, name, parent_connect, age=None, birth_date=None):
    """
    Sign up a child account under an existing parent's household.

    Raises:
        NotFound: If ``parent_connect`` does not belong to a parent
        Conflict: If ``user_id`` is taken
    """
    parent = User.objects.filter(connect=parent_connect, role=User.Role.PARENT).first()
    if not parent_connect or parent is None:
        raise NotFound(f"No parent account uses connect code {parent_connect}.")

    if User.objects.filter(username=user_id).exists():
        raise Conflict(f"User id {user_id} is already registered.")

    try:
        with transaction.atomic():
            user = User(
                username=user_id,
                name=name,
                role=User.Role.CHILD,
                connect=parent.connect,
                dispenser_id=parent.dispenser_id,
                age=age,
                birth_date=birth_date,
            )
            user.set_password(password)
            user.save()

            log_event(
                AuditEvent.EventType.CREATE, 'user', user_id,
                f"Child {user_id} joined household {parent.connect}",
                user=user, connect=parent.connect,
            )
    except IntegrityError:
        raise Conflict(f"User id {user_id} is already registered.")

    logger.info(f"Child {user_id} joined household {parent.connect}")
    return user


def pair_dispenser(requesting_user, dispenser_id):
    """
    Bind a dispenser to the requester's whole household.

    Every member's ``dispenser_id`` is replaced in one UPDATE inside the
    household lock, so readers see either the old value or the new one for
    all members.

    Returns:
        int: Number of members updated

    Raises:
        Forbidden: If the requester is not a parent
        Conflict: If the dispenser is already paired with another household
    """
    if not can_pair_dispenser(requesting_user.role):
        raise Forbidden("Only the parent account can pair a dispenser.")
    if not dispenser_id:
        raise InvalidArgument("dispenser_id is required.")

    connect = requesting_user.connect

    with household_lock(connect):
        taken = User.objects.filter(dispenser_id=dispenser_id).exclude(connect=connect).exists()
        if taken:
            raise Conflict(f"Dispenser {dispenser_id} is already paired with another household.")

        updated = User.objects.filter(connect=connect).update(dispenser_id=dispenser_id)

        # Slot rows keep a snapshot of the unit they were filled for
        from medication.models import SlotAssignment
        SlotAssignment.objects.filter(connect=connect).update(dispenser_id=dispenser_id)

        log_event(
            AuditEvent.EventType.PAIR, 'dispenser', dispenser_id,
            f"Dispenser {dispenser_id} paired with household {connect}",
            user=requesting_user, connect=connect,
            additional_data={'members_updated': updated},
        )

    requesting_user.dispenser_id = dispenser_id
    logger.info(f"Dispenser {dispenser_id} paired with household {connect} ({updated} members)")
    return updated


def pair_daily_kit(user, kit_id):
    """
    Bind a daily kit to a single user. Any role may pair their own kit.

    Raises:
        Conflict: If the kit is bound to a different user
    """
    if not kit_id:
        raise InvalidArgument("kit_id is required.")

    try:
        with transaction.atomic():
            holder = User.objects.select_for_update().filter(kit_id=kit_id).first()
            if holder is not None and holder.pk != user.pk:
                raise Conflict(f"Kit {kit_id} is already bound to another user.")

            User.objects.filter(pk=user.pk).update(kit_id=kit_id)

            log_event(
                AuditEvent.EventType.PAIR, 'kit', kit_id,
                f"Kit {kit_id} bound to {user.username}",
                user=user, connect=user.connect,
            )
    except IntegrityError:
        raise Conflict(f"Kit {kit_id} is already bound to another user.")
    user.kit_id = kit_id

    logger.info(f"Kit {kit_id} bound to user {user.username}")
    return user


def list_members(user):
    """All users sharing the requester's connect code, parent first."""
    if not user.connect:
        raise NotFound("User is not linked to a household.")
    return list(user.household_members().order_by('-role', 'date_joined'))


def list_dispenser_members(dispenser_id):
    """
    Users whose household is paired with ``dispenser_id``, parent first.

    Raises:
        NotFound: If no household has paired this dispenser
    """
    members = list(User.objects.filter(dispenser_id=dispenser_id).order_by('-role', 'date_joined'))
    if not members:
        raise NotFound(f"Dispenser {dispenser_id} is not paired.")
    return members


def _get_household_child(parent, child_id):
    if not can_manage_members(parent.role):
        raise Forbidden("Only the parent account can manage family members.")
    try:
        return User.objects.get(username=child_id, connect=parent.connect, role=User.Role.CHILD)
    except User.DoesNotExist:
        raise NotFound(f"Child {child_id} not found in this household.")


def remove_child(parent, child_id):
    """
    Delete a child account. Its schedules and dose history go with it, and
    its id is dropped from every item's ``target_users``. An item left with
    no targets becomes shared again.

    Raises:
        Forbidden: If the requester is not a parent
        NotFound: If the child is not in the parent's household
    """
    child = _get_household_child(parent, child_id)

    from medication.models import Medicine

    with household_lock(parent.connect):
        targeted = Medicine.objects.select_for_update().filter(
            connect=parent.connect, target_users__isnull=False
        )
        for medicine in targeted:
            if child_id not in medicine.target_users:
                continue
            remaining = [u for u in medicine.target_users if u != child_id]
            medicine.target_users = remaining or None
            medicine.save(update_fields=['target_users', 'updated_at'])
            logger.info(f"Removed {child_id} from target users of {medicine.item_id}")

        child.delete()
        log_event(
            AuditEvent.EventType.DELETE, 'user', child_id,
            f"Child {child_id} removed by {parent.username}",
            user=parent, connect=parent.connect,
        )

    logger.info(f"Child {child_id} removed from household {parent.connect}")


def update_child(parent, child_id, name=None, age=None, birth_date=None):
    """Edit a child's profile fields. Only the given fields change."""
    child = _get_household_child(parent, child_id)

    changed = []
    if name is not None:
        child.name = name
        changed.append('name')
    if age is not None:
        child.age = age
        changed.append('age')
    if birth_date is not None:
        child.birth_date = birth_date
        changed.append('birth_date')

    if changed:
        child.save(update_fields=changed)
        log_event(
            AuditEvent.EventType.UPDATE, 'user', child_id,
            f"Child {child_id} updated: {', '.join(changed)}",
            user=parent, connect=parent.connect,
        )
    return child


def verify_uid(uid):
    """
    Resolve a uid scanned from hardware.

    Returns one of:
        {'confirmed': True, 'type': 'kit', 'user': User}
        {'confirmed': True, 'type': 'dispenser', 'dispenser_id': str, 'connect': str}
        {'confirmed': False, 'type': 'unknown', 'uid': str, 'qr_data': str}
    """
    user = User.objects.filter(kit_id=uid).first()
    if user:
        return {'confirmed': True, 'type': 'kit', 'user': user}

    owner = User.objects.filter(dispenser_id=uid).first()
    if owner:
        return {
            'confirmed': True,
            'type': 'dispenser',
            'dispenser_id': uid,
            'connect': owner.connect,
        }

    qr_data = json.dumps({
        'type': 'link',
        'uid_type': 'kit',
        'kit_id': uid,
        'created_at': timezone.now().isoformat(),
    })
    return {'confirmed': False, 'type': 'unknown', 'uid': uid, 'qr_data': qr_data}


def get_household_member(requester, user_id=None):
    """
    The requester, or the member ``user_id`` of the requester's household.

    Raises:
        NotFound: If ``user_id`` is not a member of the same household
    """
    if not user_id or user_id == requester.username:
        return requester
    try:
        return User.objects.get(username=user_id, connect=requester.connect)
    except User.DoesNotExist:
        raise NotFound(f"User {user_id} not found in this household.")
