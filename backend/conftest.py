import pytest
from django.test import SimpleTestCase, TransactionTestCase


@pytest.fixture(autouse=True)
def _django_runner_db_guard(request, django_db_blocker):
    """Match `manage.py test`: SimpleTestCase relies on Django's own database
    guard, which tolerates connection housekeeping (e.g. channels calling
    close_old_connections) on a connection opened by an earlier TestCase."""
    cls = getattr(request.node, "cls", None)
    if cls is not None and issubclass(cls, SimpleTestCase) and not issubclass(cls, TransactionTestCase):
        with django_db_blocker.unblock():
            yield
    else:
        yield
