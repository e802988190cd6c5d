import pytest

from motor_service.models import AssessmentConfig

from builders import FakeScheduler


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def config():
    """Default timings and geometry, independent of the environment."""
    return AssessmentConfig()
