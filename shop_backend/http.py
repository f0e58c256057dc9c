import functools
import json
import logging

from django.http import JsonResponse

from . import errors

logger = logging.getLogger(__name__)


def json_body(request):
    """
    Parses a JSON object body; an empty body is treated as an empty object.
    """
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise errors.ValidationError("Invalid JSON")
    if not isinstance(data, dict):
        raise errors.ValidationError("Request body must be a JSON object")
    return data


def request_params(request):
    """
    Merges query parameters with form or JSON body fields, body winning.

    Gateway redirects arrive as GET query strings or POSTed forms depending on
    the gateway environment, so callback views read from both.
    """
    params = request.GET.dict()
    if request.method == 'POST':
        if request.content_type == 'application/json':
            params.update(json_body(request))
        else:
            params.update(request.POST.dict())
    return params


def page_params(request, default_limit=10):
    try:
        page = max(int(request.GET.get('page', 1)), 1)
        limit = max(int(request.GET.get('limit', default_limit)), 1)
    except ValueError:
        raise errors.ValidationError("page and limit must be integers")
    return page, limit


def handles_shop_errors(view):
    """
    Renders ShopError subclasses as JSON error bodies with their status code.
    """
    @functools.wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except errors.ShopError as e:
            logger.warning(f"{view.__name__} rejected request: {e.kind} - {e.message} {e.details}")
            return JsonResponse(e.to_dict(), status=e.status_code)
        except Exception as e:
            logger.exception(f"Unhandled error in {view.__name__}: {e}")
            return JsonResponse({'error': 'INTERNAL_ERROR', 'message': "An internal error occurred. Please try again."}, status=500)
    return wrapper
