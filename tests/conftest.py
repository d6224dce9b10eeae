import pytest

from surface_pilot.models import Policy
from surface_pilot.policy import DEFAULT_POLICY, PolicyStore


@pytest.fixture
def policy_path(tmp_path):
    return tmp_path / "policy.json"


@pytest.fixture
def policy_store(policy_path):
    return PolicyStore(policy_path)


@pytest.fixture
def full_auto_store(policy_store):
    policy = policy_store.load()
    policy_store.save(policy.model_copy(update={"safety_mode": "full-auto"}))
    return policy_store


@pytest.fixture
def default_policy():
    return Policy.model_validate(DEFAULT_POLICY)
