"""Concurrency helpers."""

from .batching import BranchOutcome, dispatch, run_batched, run_pooled, run_serial

__all__ = ["BranchOutcome", "dispatch", "run_batched", "run_pooled", "run_serial"]
