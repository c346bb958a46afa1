import os
import random

import pytest

# Keep tests off the real database and log directory
# Set these BEFORE importing any project modules
os.environ["PMOS_DATABASE_URL"] = "sqlite://"
os.environ.pop("PMOS_LOG_DIR", None)

from pmos_network.api.models import Base, create_session_factory
from pmos_network.providers.clouds import AwsProvider, AzureProvider, GcpProvider


class FixedOctetRandom(random.Random):
    """random.Random whose randint always returns the pinned octet."""

    def __init__(self, octet):
        super().__init__(0)
        self.octet = octet
        self.calls = []

    def randint(self, a, b):
        self.calls.append((a, b))
        return self.octet


@pytest.fixture
def db_factory():
    factory = create_session_factory("sqlite://")
    yield factory
    Base.metadata.drop_all(bind=factory.kw["bind"])


@pytest.fixture
def db(db_factory):
    database = db_factory()
    try:
        yield database
    finally:
        database.close()


@pytest.fixture
def azure(db_factory):
    return AzureProvider(db_factory, "eastus")


@pytest.fixture
def aws(db_factory):
    return AwsProvider(db_factory, "us-east-1")


@pytest.fixture
def gcp(db_factory):
    return GcpProvider(db_factory, "us-central1")


@pytest.fixture
def fixed_octet():
    return FixedOctetRandom
