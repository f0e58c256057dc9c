import functools
import logging
import random
import time

from django.db import OperationalError, transaction

from .errors import PersistenceConflict

logger = logging.getLogger(__name__)

# Seconds to wait before the retry; jittered so colliding writers spread out.
RETRY_DELAY = 0.05


def unit_of_work(func):
    """
    Runs ``func`` inside one transaction, retrying once on a lock or
    serialization failure before surfacing PersistenceConflict.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        for attempt in (1, 2):
            try:
                with transaction.atomic():
                    return func(*args, **kwargs)
            except OperationalError as e:
                if transaction.get_connection().in_atomic_block:
                    # Nested in an outer unit of work; let the outer one decide.
                    raise
                logger.warning(f"Concurrent write conflict in {func.__name__} (attempt {attempt}): {e}")
                if attempt == 1:
                    time.sleep(RETRY_DELAY * (1 + random.random()))
        raise PersistenceConflict(f"Concurrent update detected in {func.__name__}, please retry.")
    return wrapper
