"""Advisor Core 顶层包。

该包提供多顾问对话与多评审者评分的编排核心，
包括配置加载、领域模型、网关 Provider 适配、流式帧解码、
轮次调度、并发评分与本地消息缓存等能力。
"""

from advisor_core.agents.turn_scheduler import TurnEvent, TurnScheduler
from advisor_core.domain.conversation import Conversation, ConversationLog
from advisor_core.evaluation import EvaluationDispatcher, ScoreAggregator

__all__ = ["Conversation", "ConversationLog", "EvaluationDispatcher", "ScoreAggregator", "TurnEvent", "TurnScheduler"]
