"""Reconciliation pipeline stages, in execution order."""

from ledger_reconciler.pipeline.accounts import (
    AccountResolver,
    compute_usage_stats,
    pick_source_account_id,
    pick_target_account_id,
    resolve_account_mention,
)
from ledger_reconciler.pipeline.catalog import CatalogResolver, resolve_tag
from ledger_reconciler.pipeline.committer import BatchCommitter
from ledger_reconciler.pipeline.composite import expand_composite_trades
from ledger_reconciler.pipeline.currency import CurrencyResolver
from ledger_reconciler.pipeline.dates import DateStabilizer
from ledger_reconciler.pipeline.exchange import normalize_exchanges
from ledger_reconciler.pipeline.merger import merge_candidates, partition_batches

__all__ = [
    "AccountResolver",
    "BatchCommitter",
    "CatalogResolver",
    "CurrencyResolver",
    "DateStabilizer",
    "compute_usage_stats",
    "expand_composite_trades",
    "merge_candidates",
    "normalize_exchanges",
    "partition_batches",
    "pick_source_account_id",
    "pick_target_account_id",
    "resolve_account_mention",
    "resolve_tag",
]
