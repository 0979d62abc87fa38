"""Read-only queries over the execution ledger."""

from budget_ledger.queries.runs import RunAggregator

__all__ = ["RunAggregator"]
