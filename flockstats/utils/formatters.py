"""Presentation formatting helpers.

Stored values and intermediate aggregates stay at full precision; the
rounding helpers here are applied only when a value is about to leave the
engine in a response or report.
"""

DISPLAY_PLACES = 2


def display_round(value, places=DISPLAY_PLACES):
    """Round a metric for display.

    Args:
        value: Raw numeric value (None passes through)
        places: Decimal places to keep

    Returns:
        Rounded float, or None
    """
    if value is None:
        return None
    return round(float(value), places)


def display_fields(row, fields, places=DISPLAY_PLACES):
    """Add ``<field>_display`` keys for the given numeric fields of a dict.

    The raw values are left untouched so consumers can still aggregate them.
    """
    for field in fields:
        if field in row:
            row[f"{field}_display"] = display_round(row[field], places)
    return row


def result_label(result):
    """Human label for a stored battle result (1/0/-1)."""
    return {1: 'win', 0: 'tie', -1: 'loss'}.get(result, 'unknown')
