"""
Deal ownership and edit permissions.

An SDR keeps edit rights on a deal they sourced only until a closer is
assigned; from then on the deal is read-only for them.
"""

from .models import Role


def _as_role(role) -> Role | None:
    if role is None:
        return None
    try:
        return Role(role)
    except ValueError:
        return None


def is_deal_owner(deal, user_id: str | None, role) -> bool:
    """Whether the user counts as an owner of the deal for their role."""
    role = _as_role(role)
    if deal is None or not user_id or role is None:
        return False

    match role:
        case Role.ADMIN:
            return deal.owner_id == user_id
        case Role.CLOSER:
            return user_id in (deal.owner_id, deal.closer_id)
        case Role.SDR:
            return user_id in (deal.owner_id, deal.sdr_id)


def can_edit_deal(deal, user_id: str | None, role) -> bool:
    role = _as_role(role)
    if deal is None or not user_id or role is None:
        return False

    match role:
        case Role.ADMIN:
            return True
        case Role.CLOSER:
            return is_deal_owner(deal, user_id, role)
        case Role.SDR:
            return is_deal_owner(deal, user_id, role) and not deal.closer_id


def is_read_only_for_user(deal, user_id: str | None, role) -> bool:
    return not can_edit_deal(deal, user_id, role)


def get_read_only_reason(deal, user_id: str | None, role) -> str | None:
    """Message explaining why the deal is read-only, or None if editable."""
    if deal is None or not user_id or _as_role(role) is None:
        return None
    if can_edit_deal(deal, user_id, role):
        return None

    if _as_role(role) == Role.SDR and deal.closer_id and is_deal_owner(deal, user_id, role):
        return "This deal has been assigned to a closer. You have read-only access."

    return "You do not have permission to edit this deal."
