# tests/conftest.py
"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from scavenger.core.scavenging.domain import ResourceType, Site, Slot, SlotStatus  # noqa: E402
from scavenger.core.scavenging.tracker import FleetStateTracker  # noqa: E402
from scavenger.infra.config_provider import InMemoryConfigurationProvider, SiteUnitsConfig  # noqa: E402
from scavenger.infra.metrics import get_metrics_collector  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    """Every test starts with empty counters"""
    collector = get_metrics_collector()
    collector.enabled = True
    collector.reset()
    yield
    collector.reset()


@pytest.fixture
def site():
    """Default site for tests"""
    return Site(site_id="101", name="Alpha")


@pytest.fixture
def tracker():
    return FleetStateTracker(ttl_seconds=3600)


@pytest.fixture
def config():
    """Fleet config with spear and light enabled everywhere"""
    return InMemoryConfigurationProvider(
        skip_level_1=False,
        base_max_resources=99999,
        default_units=SiteUnitsConfig(spear=True, light=True),
    )


@pytest.fixture
def free_slots():
    """All four levels available"""
    return [Slot(level=level, status=SlotStatus.AVAILABLE) for level in (1, 2, 3, 4)]


@pytest.fixture
def all_enabled():
    return {unit: True for unit in ResourceType}
