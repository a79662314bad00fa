import logging
import time

from rest_framework import status
from rest_framework.response import Response

from SkillGate.errors import ServiceError


def create_response(success, message, body=None, status_code=status.HTTP_200_OK):
    response_data = {'success': success, 'message': message}
    if body is not None:
        response_data['body'] = body
    return Response(response_data, status=status_code)


def error_response(exc: ServiceError, extra=None):
    body = exc.body()
    if extra:
        body.update(extra)
    return create_response(False, exc.message, body, status_code=exc.status_code)


def retry_call(fn, *args, retry_on=(Exception,), max_retries=3, delay=2, label="call", **kwargs):
    """
    Call ``fn`` up to ``max_retries`` times, sleeping ``delay`` seconds between
    failures listed in ``retry_on``. The last failure is re-raised.
    """
    for attempt in range(max_retries):
        try:
            return fn(*args, **kwargs)
        except retry_on as e:
            logging.warning(f"{label} failed (attempt {attempt+1}/{max_retries}): {e}")
            if attempt < max_retries - 1:
                time.sleep(delay)
            else:
                raise
