from gateway.tests.fixtures_clients import *  # noqa
from gateway.tests.fixtures_registry import *  # noqa
