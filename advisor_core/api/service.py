"""对外 API 服务模块。

提供简化的函数接口供上层应用调用。
"""

from typing import Any, Dict, List, Optional, Sequence

from advisor_core.agents.turn_scheduler import TurnScheduler
from advisor_core.config.settings import settings
from advisor_core.domain.conversation import Conversation, Message, MessageCache
from advisor_core.domain.evaluation import CriterionSet, Evaluation, Subject
from advisor_core.evaluation.aggregator import ScoreAggregator
from advisor_core.evaluation.dispatcher import EvaluationDispatcher
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.infrastructure.storage.json_store import JsonMessageCache
from advisor_core.providers import create_provider


_cache: Optional[MessageCache] = None
_scheduler: Optional[TurnScheduler] = None
_dispatcher: Optional[EvaluationDispatcher] = None


def get_default_cache() -> MessageCache:
    """获取默认的本地消息缓存（单例）。"""
    global _cache
    if _cache is None:
        _cache = JsonMessageCache(root=settings.storage_root)
    return _cache


def get_default_scheduler() -> TurnScheduler:
    """获取默认的顾问轮次调度器（单例，按会话隔离轮次状态）。"""
    global _scheduler
    if _scheduler is None:
        _scheduler = TurnScheduler(provider=create_provider())
    return _scheduler


def get_default_dispatcher() -> EvaluationDispatcher:
    """获取默认的评分分发器（单例）。"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EvaluationDispatcher(provider=create_provider())
    return _dispatcher


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "participant_id": message.participant_id,
        "content": message.content,
        "is_final": message.is_final,
        "created_at": message.created_at.isoformat(),
        "meta": message.meta,
    }


def evaluation_to_dict(evaluation: Evaluation) -> Dict[str, Any]:
    return {
        "subject_id": evaluation.subject_id,
        "overall_score": evaluation.overall_score,
        "display_score": evaluation.display_score,
        "tier": evaluation.tier,
        "criteria": {
            key: {
                "score": r.score,
                "rationale": r.rationale,
                "evaluator_id": r.evaluator_id,
                "failed": r.failed,
                "error_code": r.error_code,
            }
            for key, r in evaluation.criteria.items()
        },
        "notices": list(evaluation.notices),
    }


async def run_advisor_round(
    conversation: Conversation,
    user_input: str,
    participants: Optional[Sequence[str]] = None,
    subject_context: str = "",
) -> Dict[str, Any]:
    """运行一轮顾问对话。

    Args:
        conversation: 会话（由调用方创建与持有）
        user_input: 用户输入内容
        participants: 本轮参与的顾问子集（可选，默认全部）
        subject_context: 当前讨论对象的上下文

    Returns:
        包含会话ID与本轮各顾问消息的字典

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        scheduler = get_default_scheduler()
        replies = await scheduler.collect_round(
            conversation,
            user_input,
            participants=participants,
            subject_context=subject_context,
        )
        cache = get_default_cache()
        for pid in {m.participant_id for m in replies if m.participant_id}:
            history = [
                m for m in conversation.log.finalized()
                if m.role == "user" or m.participant_id == pid
            ]
            cache.set(conversation.id, pid, history)
        return {
            "conversation_id": conversation.id,
            "messages": [message_to_dict(m) for m in replies],
        }
    except Exception as e:
        logger.error(f"Advisor round failed: {e}", extra={"extra": {
            "conversation_id": conversation.id,
            "error": str(e),
        }})
        raise


def cancel_round(conversation_id: str) -> None:
    """取消某个会话正在进行的轮次，其他会话不受影响。"""
    get_default_scheduler().cancel(conversation_id)


def restore_messages(conversation_id: str, participant_id: str) -> List[Dict[str, Any]]:
    """从本地缓存恢复某位顾问的历史消息，过期或不存在时返回空列表。"""
    cached = get_default_cache().get(conversation_id, participant_id)
    return [message_to_dict(m) for m in cached or []]


async def evaluate_subject(
    subject: Subject,
    criterion_set: CriterionSet,
    ceiling: Optional[float] = None,
) -> Dict[str, Any]:
    """对一个对象按指定维度集合评分并聚合。"""
    results = await get_default_dispatcher().evaluate(subject, criterion_set)
    evaluation = ScoreAggregator(criterion_set).aggregate(subject.id, results, ceiling=ceiling)
    return evaluation_to_dict(evaluation)
