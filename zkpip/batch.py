"""Batch verification.

Bundles are processed one at a time in input order. A failing item is
recorded in its slot and never stops the rest of the batch, so

    total == passed + failed == len(results)

and ``results[i]`` always belongs to ``bundles[i]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Union

from zkpip.adapters import Adapter, AdapterRegistry, ProofBundle, dispatch, verify_with_registry
from zkpip.errors import VerifyOutcome

logger = logging.getLogger(__name__)

# BatchResult.adapter when each bundle was routed individually
AUTO_ADAPTER = "auto"

BundleLike = Union[ProofBundle, Mapping[str, Any]]


@dataclass(frozen=True)
class BatchResult:
    adapter: str
    total: int
    passed: int
    failed: int
    results: List[VerifyOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter": self.adapter,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


def _aggregate(adapter: str, results: List[VerifyOutcome]) -> BatchResult:
    passed = sum(1 for r in results if r.ok)
    result = BatchResult(
        adapter=adapter,
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        results=results,
    )
    logger.info(
        "batch %s: %d/%d passed",
        adapter,
        result.passed,
        result.total,
        extra={
            "operation": "batch",
            "context": {"adapter": adapter, "total": result.total, "failed": result.failed},
        },
    )
    return result


def seal_batch(adapter: Adapter, bundles: Sequence[BundleLike]) -> BatchResult:
    """Dispatch every bundle to `adapter`, in order."""
    return _aggregate(adapter.id, [dispatch(adapter, b) for b in bundles])


def verify_batch(registry: AdapterRegistry, bundles: Sequence[BundleLike]) -> BatchResult:
    """Route each bundle to the first adapter that claims it, in order."""
    return _aggregate(AUTO_ADAPTER, [verify_with_registry(registry, b) for b in bundles])
