"""
Gas metering for deterministic execution.

Every kernel operation charges a fixed cost from config.GAS_COSTS. Once the
budget is spent the call aborts with BudgetExceededError, the same way an
out-of-gas call reverts in a metered VM.
"""

from . import config
from .errors import BudgetExceededError


class GasMeter:
    def __init__(self, budget=None, costs=None):
        self.budget = config.VERIFY_GAS_BUDGET if budget is None else budget
        self.costs = config.GAS_COSTS if costs is None else costs
        self.used = 0
        self.counts = {}

    def charge(self, op: str) -> None:
        cost = self.costs[op]
        if self.used + cost > self.budget:
            raise BudgetExceededError(
                f"gas budget {self.budget} exhausted at {op} (used {self.used})")
        self.used += cost
        self.counts[op] = self.counts.get(op, 0) + 1

    @property
    def remaining(self) -> int:
        return self.budget - self.used

    def __repr__(self):
        return f"GasMeter(used={self.used}, budget={self.budget})"
