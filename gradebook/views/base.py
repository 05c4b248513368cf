import json
import logging
from functools import wraps

from django.http import JsonResponse

from ..exceptions import ReportCardError, BadRequest

logger = logging.getLogger(__name__)


def is_school_admin(user):
    """Check if user is a school admin or superuser."""
    return user.is_superuser or getattr(user, 'is_school_admin', False)


def is_teacher_or_admin(user):
    """Check if user is a teacher, school admin, or superuser."""
    return (user.is_superuser or
            getattr(user, 'is_school_admin', False) or
            getattr(user, 'is_teacher', False))


def _require(check, message):
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return JsonResponse({'error': 'Authentication required'}, status=401)
            if check is not None and not check(request.user):
                return JsonResponse({'error': message}, status=403)
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator


login_required = _require(None, '')
admin_required = _require(is_school_admin, 'Only school administrators can do this')
teacher_or_admin_required = _require(is_teacher_or_admin, 'Only staff can do this')


def api_view(view_func):
    """
    Translate engine errors into JSON error responses.

    ReportCardError subclasses carry their own HTTP status.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except ReportCardError as e:
            if e.status_code >= 500:
                logger.error(f"{view_func.__name__} failed: {e.message}")
            return JsonResponse({'error': e.message}, status=e.status_code)
    return wrapper


def json_body(request):
    """Parsed JSON request body; an empty body is an empty dict."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise BadRequest('Invalid JSON body')
    if not isinstance(data, dict):
        raise BadRequest('JSON body must be an object')
    return data


def as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')
