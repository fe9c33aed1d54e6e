"""
Quote status workflow.
"""

from typing import Dict, FrozenSet, List, Union

from utils import lifecycle_logger, ForbiddenTransition

from .models import Actor, Quote, QuoteStatus

# 所有者允许的状态流转；approved / rejected 对所有者是终态
OWNER_TRANSITIONS: Dict[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.DRAFT: frozenset({QuoteStatus.SENT, QuoteStatus.APPROVED, QuoteStatus.REJECTED}),
    QuoteStatus.SENT: frozenset({QuoteStatus.APPROVED, QuoteStatus.REJECTED}),
    QuoteStatus.APPROVED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
}


class QuoteLifecycle:
    """报价状态机"""

    def can_transition(self, actor: Actor, current_status: Union[QuoteStatus, str],
                       target_status: Union[QuoteStatus, str], owner_id: str) -> bool:
        """管理员可设置任意状态；所有者只能走 OWNER_TRANSITIONS；其他人一律不允许"""
        current = QuoteStatus(current_status)
        target = QuoteStatus(target_status)

        if actor.is_admin:
            return True
        if actor.actor_id != owner_id:
            return False
        return target in OWNER_TRANSITIONS[current]

    def transition(self, quote: Quote, actor: Actor, target_status: Union[QuoteStatus, str]) -> Quote:
        """返回状态已变更的新报价，不修改传入对象"""
        target = QuoteStatus(target_status)

        if not self.can_transition(actor, quote.status, target, quote.owner_id):
            lifecycle_logger.warning(
                f"[Lifecycle] {actor.actor_id} denied {quote.status.value} -> {target.value} "
                f"on quote {quote.id}"
            )
            raise ForbiddenTransition(quote.status.value, target.value, actor.actor_id)

        lifecycle_logger.info(
            f"[Lifecycle] Quote {quote.quote_number}: {quote.status.value} -> {target.value} "
            f"by {actor.actor_id}"
        )
        return quote.model_copy(update={'status': target})

    def allowed_targets(self, actor: Actor, quote: Quote) -> List[QuoteStatus]:
        """状态下拉框可选项（不含当前状态）"""
        return [status for status in QuoteStatus
                if status != quote.status
                and self.can_transition(actor, quote.status, status, quote.owner_id)]
