"""提示词模板与请求构造。

按语言(locale) 从 prompts/<locale> 目录读取模板文本，
再结合顾问人设把 ModelInvocation / 评分请求转换成 ChatRequest。
提示词措辞不影响编排逻辑，这里只保证结构：system 提示 + 历史消息。
"""

import json
from pathlib import Path
from typing import Any, Dict, Mapping

from advisor_core.domain.evaluation import Criterion, Subject
from advisor_core.domain.models import ChatMessage, ChatRequest, ModelInvocation


PROMPTS_DIR = Path(__file__).resolve().parent

# 顾问人设：id -> (显示名, 角色, 性格)
PERSONAS: Dict[str, Dict[str, str]] = {
    "evergreen": {
        "name": "Ever Green",
        "role": "CEO / Visionary",
        "personality": "Architect of the future. Makes final strategic decisions and keeps ethical boundaries.",
    },
    "prisma": {
        "name": "Prisma",
        "role": "Product Manager",
        "personality": "Voice of the user. Obsessed with solving real human problems.",
    },
    "toxic": {
        "name": "Toxic",
        "role": "Red Team Lead / Security",
        "personality": "Adversarial thinker who breaks illusions of safety. Thinks like an attacker.",
    },
    "phoenix": {
        "name": "Phoenix",
        "role": "CMO",
        "personality": "Growth architect and brand storyteller. Builds authentic community.",
    },
    "techpriest": {
        "name": "Tech Priest",
        "role": "CTO",
        "personality": "Designs scalable architectures and explains complex concepts through analogies.",
    },
    "virgilia": {
        "name": "Virgilia",
        "role": "Visual Storyteller",
        "personality": "Translates emotions into visual language.",
    },
    "zen": {
        "name": "Zen",
        "role": "HR / Wellbeing",
        "personality": "Culture keeper who creates psychological safety for the team.",
    },
}

EXPAND_PROMPT = "Can you expand on that with more detail?"
EXPANSION_SEPARATOR = "\n\n---\n\n"

_LENGTH_RULES = {
    "concise": "Keep responses concise (2-4 sentences usually)",
    "detailed": "Give a thorough, detailed answer with concrete examples",
}


def load_prompt(kind: str, locale: str = "en") -> str:
    """根据模板类型和语言加载提示词文本（advisor_system / evaluator_task）。"""

    fname = PROMPTS_DIR / locale / f"{kind}.md"
    return fname.read_text(encoding="utf-8")


def persona(participant_id: str) -> Dict[str, str]:
    """未登记的参与者使用以 id 为名的通用人设。"""

    return PERSONAS.get(
        participant_id,
        {"name": participant_id, "role": "advisor", "personality": "A helpful startup advisor."},
    )


def display_name(participant_id: str) -> str:
    return persona(participant_id)["name"]


def build_advisor_request(invocation: ModelInvocation, model: str, provider: str = "gateway") -> ChatRequest:
    """把一个顾问轮次的调用描述转换成流式 ChatRequest。"""

    profile = persona(invocation.participant_id)
    others = ", ".join(
        f"{persona(pid)['name']} ({persona(pid)['role']})" for pid in invocation.other_participant_ids
    ) or "no one else"
    system = load_prompt("advisor_system").format(
        name=profile["name"],
        role=profile["role"],
        personality=profile["personality"],
        others=others,
        subject_context=invocation.subject_context or "(none)",
        length_rule=_LENGTH_RULES[invocation.response_mode],
    )
    messages = [ChatMessage(role="system", content=system)]
    messages.extend(ChatMessage(role=m.role, content=m.content) for m in invocation.prior_messages)
    return ChatRequest(
        provider=provider,
        model=model,
        messages=messages,
        meta={"participant_id": invocation.participant_id, "response_mode": invocation.response_mode},
    )


def _render_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, indent=2, default=str)


def _render_metadata(metadata: Mapping[str, Any]) -> str:
    if not metadata:
        return "(none)"
    return "\n".join(f"- {k}: {v}" for k, v in metadata.items())


def build_evaluation_request(
    subject: Subject,
    criterion: Criterion,
    model: str,
    provider: str = "gateway",
) -> ChatRequest:
    """构造单个评分维度的非流式请求，要求模型只返回 JSON 对象。"""

    profile = persona(criterion.evaluator_id)
    task = load_prompt("evaluator_task").format(
        name=profile["name"],
        role=profile["role"],
        criterion_key=criterion.key,
        criterion_description=criterion.description,
        min_score=criterion.min_score,
        max_score=criterion.max_score,
        subject_metadata=_render_metadata(subject.metadata),
        subject_content=_render_content(subject.content),
    )
    return ChatRequest(
        provider=provider,
        model=model,
        messages=[
            ChatMessage(
                role="system",
                content=f"You are {profile['name']}, {profile['role']}. {profile['personality']}",
            ),
            ChatMessage(role="user", content=task),
        ],
        response_format="json_object",
        meta={"criterion_key": criterion.key, "evaluator_id": criterion.evaluator_id, "subject_id": subject.id},
    )
