"""
Kitchen ticket shortcodes.

POS tickets use 1-20 and online tickets use M31-M39. The first code not
held by an active ticket at the location wins; when every code is taken
the range loops back to its first code.
"""

from collections.abc import Iterable

from apps.web.restaurant.models import TicketSource

POS_SHORTCODES = [str(n) for n in range(1, 21)]
ONLINE_SHORTCODES = [f"M{n}" for n in range(31, 40)]


def assign_shortcode(source: str, existing_shortcodes: Iterable[str]) -> str:
    """
    Pick the next shortcode for a new ticket.

    Args:
        source: TicketSource value of the new ticket.
        existing_shortcodes: Shortcodes of the location's active tickets.

    Returns:
        The first free code in the source's range, or the range's first
        code when all are taken.
    """
    used = set(existing_shortcodes)
    candidates = (
        ONLINE_SHORTCODES if source == TicketSource.ONLINE.value else POS_SHORTCODES
    )
    for code in candidates:
        if code not in used:
            return code
    return candidates[0]
