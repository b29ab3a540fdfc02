"""BDD tests for circuit breaker and degradation features."""

import pytest
from pytest_bdd import scenarios

# Load all resilience feature scenarios
scenarios(".")

pytestmark = [
    pytest.mark.tier(1),
    pytest.mark.tra("Core.Resilience.CircuitBreaker"),
]
