import logging
from typing import List, Optional

from config import PipelineConfig
from exceptions import RemoteStrategyError, ValidationError
from schemas import Customization, StrategyKind, StrategyResult
from strategies import STRATEGIES, ConcatenationStrategy, StrategyContext

logger = logging.getLogger(__name__)


def select_strategies(config: PipelineConfig, customization: Optional[Customization]) -> List[StrategyKind]:
    """
    Decide up front which strategies a job may use, in the order they are tried.

      overlays requested          -> [TEMPLATE_RENDER]
      media host configured       -> [TRANSFORMATION_CHAIN, MANIFEST]
      nothing remote configured   -> [BINARY_CONCAT]

    Only TRANSFORMATION_CHAIN falls through to MANIFEST. Template rendering
    and binary concatenation are never reached by falling back; a job
    whose chain fails does not silently lose its overlays or degrade to
    byte-joined output.
    """
    if customization is not None and customization.has_overlays():
        if not config.template_rendering_available:
            raise ValidationError("Text overlays were requested but template rendering is not configured")
        return [StrategyKind.TEMPLATE_RENDER]

    if config.remote_concatenation_available:
        return [StrategyKind.TRANSFORMATION_CHAIN, StrategyKind.MANIFEST]

    logger.warning("No remote concatenation backend configured. Falling back to binary concatenation.")
    return [StrategyKind.BINARY_CONCAT]


class RemoteJobDriver:
    def __init__(self, config: PipelineConfig, strategies=None):
        self.config = config
        self.strategies = strategies or STRATEGIES

    async def run(self, ctx: StrategyContext, plan: List[StrategyKind] = None) -> StrategyResult:
        """
        Try each selected strategy as a complete attempt. A RemoteStrategyError
        moves on to the next one; any other error (timeout, cancellation,
        download) ends the job immediately. When every strategy is rejected
        the last rejection is raised.
        """
        plan = plan or select_strategies(self.config, ctx.customization)
        logger.info(f"Strategy plan for job {ctx.job.job_id}: {[kind.value for kind in plan]}")

        last_error = None
        for position, kind in enumerate(plan):
            strategy: ConcatenationStrategy = self.strategies[kind]
            ctx.job.strategy = kind
            try:
                result = await strategy.execute(ctx)
            except RemoteStrategyError as e:
                last_error = e
                if position < len(plan) - 1:
                    logger.warning(f"{e}. Trying {plan[position + 1].value} next.")
                else:
                    logger.warning(f"{e}. No strategies left.")
                continue

            ctx.job.degraded = result.degraded
            logger.info(f"✅ Job {ctx.job.job_id} concatenated with {kind.value}")
            return result

        raise last_error
