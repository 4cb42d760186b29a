"""Copy strategy selection."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from .models import CopyRequest, Strategy
from .validator import TEMPLATE_FILTER_NOTICE, TEMPLATE_PHASE_NOTICE


@dataclass(frozen=True)
class StrategyDecision:
    strategy: Strategy
    notices: tuple[str, ...] = ()


def select_strategy(request: CopyRequest) -> StrategyDecision:
    """Choose how to copy a validated request.

    - TemplateClone when --fast is usable (same server, no filters, both
      schema and data)
    - SyncDiff when --sync is set
    - DumpRestorePipe otherwise, including the --fast fallback when filters
      or --schema-only/--data-only are present
    """
    opts = request.options
    notices: list[str] = []
    clone_blocked = opts.has_filters or opts.phase_restricted

    if opts.fast and request.same_server and not clone_blocked:
        strategy = Strategy.TEMPLATE_CLONE
    elif opts.sync:
        strategy = Strategy.SYNC_DIFF
    else:
        if opts.fast and opts.has_filters:
            notices.append(TEMPLATE_FILTER_NOTICE)
        if opts.fast and opts.phase_restricted:
            notices.append(TEMPLATE_PHASE_NOTICE)
        strategy = Strategy.DUMP_RESTORE_PIPE

    logger.info(f"Selected copy strategy: {strategy.value}")
    return StrategyDecision(strategy=strategy, notices=tuple(notices))
