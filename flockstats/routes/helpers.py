"""Shared helpers for JSON blueprints: identity, query args, request bodies."""
from functools import wraps

from flask import abort, current_app, g, jsonify, request

from flockstats.exceptions import ValidationError
from flockstats.services.periods import parse_date


def actor_required(f):
    """Require the trusted actor id header on write endpoints.

    The authenticating proxy in front of the app sets the header; the id is
    stored on ``g.actor_id`` and passed to the services for the audit trail.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = request.headers.get(current_app.config['ACTOR_HEADER'], '').strip()
        if not actor_id:
            response = jsonify({
                'error': 'Unauthorized',
                'message': f"Missing {current_app.config['ACTOR_HEADER']} header"
            })
            response.status_code = 401
            abort(response)
        g.actor_id = actor_id
        return f(*args, **kwargs)

    return decorated_function


def json_body():
    """Parsed JSON object body, or a ValidationError."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def date_args():
    """Optional start/end query args as dates."""
    return (
        parse_date(request.args.get('start'), 'start'),
        parse_date(request.args.get('end'), 'end'),
    )


def page_args():
    """page/limit query args, limit capped at 100."""
    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', current_app.config['ITEMS_PER_PAGE'], type=int)
    if page < 1 or limit < 1:
        raise ValidationError('page and limit must be positive integers')
    return page, min(limit, 100)


def bool_arg(name):
    """'true'/'false' query arg as a bool, None when absent."""
    value = request.args.get(name)
    if value is None:
        return None
    if value.lower() in ('1', 'true', 'yes'):
        return True
    if value.lower() in ('0', 'false', 'no'):
        return False
    raise ValidationError(f"{name} must be true or false")
