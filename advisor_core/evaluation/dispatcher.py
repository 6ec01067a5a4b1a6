"""并发评分分发器。

一个 Subject 在每个评分维度上各发一个独立的非流式请求，全部并发（join-all-settled）：
任何一个维度失败（网络、超时、JSON 格式、限流）只会让该维度退回中性分，不影响其他维度。
"""

import asyncio
import json
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from advisor_core.config.settings import settings
from advisor_core.domain.evaluation import Criterion, CriterionResult, Subject
from advisor_core.domain.exceptions import BusinessError, MalformedResponseError
from advisor_core.infrastructure.logging.logger import logger
from advisor_core.prompts import build_evaluation_request
from advisor_core.providers.base import ProviderClient
from advisor_core.providers.retry import RetryPolicy

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def parse_score_payload(text: str) -> Dict[str, Any]:
    """把评审者返回的文本解析为 ``{score, rationale}``。

    模型有时会在 JSON 外包一层说明文字或代码块，此时取第一个 ``{...}`` 片段再解析。
    score 必须是有限数值；rationale 缺省时读取 explanation 字段。

    Raises:
        MalformedResponseError: 没有 JSON 对象或 score 不是数值。
    """

    raw = (text or "").strip()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(raw)
        if not match:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="no JSON object in evaluator reply")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedResponseError(code="MALFORMED_RESPONSE", message="evaluator reply is not a JSON object")

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
        raise MalformedResponseError(code="MALFORMED_RESPONSE", message=f"score is not numeric: {score!r}")
    rationale = data.get("rationale")
    if not isinstance(rationale, str):
        rationale = data.get("explanation") if isinstance(data.get("explanation"), str) else ""
    return {"score": float(score), "rationale": rationale}


class EvaluationDispatcher:
    def __init__(
        self,
        provider: ProviderClient,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
    ):
        self._provider = provider
        self._model = model or settings.evaluator_model
        self._retry = retry_policy or RetryPolicy()
        self._timeout = timeout or settings.evaluation_timeout

    async def evaluate(self, subject: Subject, criteria: Iterable[Criterion]) -> Dict[str, CriterionResult]:
        """并发评分，返回 criterion_key -> CriterionResult，每个维度必有结果。"""

        items: List[Criterion] = list(criteria)
        log_ctx = {"trace_id": f"tr-{uuid4().hex}", "subject_id": subject.id}
        self._log(logging.INFO, "Evaluation dispatched", log_ctx, criteria=[c.key for c in items])

        outcomes = await asyncio.gather(
            *(self._score(subject, c, log_ctx) for c in items),
            return_exceptions=True,
        )

        results: Dict[str, CriterionResult] = {}
        for criterion, outcome in zip(items, outcomes):
            if isinstance(outcome, CriterionResult):
                results[criterion.key] = outcome
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            results[criterion.key] = self._fallback(criterion, outcome, log_ctx)

        failed = [k for k, r in results.items() if r.failed]
        self._log(logging.INFO, "Evaluation settled", log_ctx, failed=failed)
        return results

    async def _score(self, subject: Subject, criterion: Criterion, log_ctx: Dict[str, Any]) -> CriterionResult:
        req = build_evaluation_request(subject, criterion, self._model, provider=self._provider.name)
        ctx = {**log_ctx, "criterion_key": criterion.key}
        result = await asyncio.wait_for(
            self._retry.execute(lambda: self._provider.complete(req), log_ctx=ctx),
            timeout=self._timeout,
        )
        parsed = parse_score_payload(result.content)
        return CriterionResult(
            criterion_key=criterion.key,
            score=criterion.clamp(parsed["score"]),
            rationale=parsed["rationale"],
            evaluator_id=criterion.evaluator_id,
        )

    def _fallback(self, criterion: Criterion, exc: Exception, log_ctx: Dict[str, Any]) -> CriterionResult:
        if isinstance(exc, asyncio.TimeoutError):
            code = "TIMEOUT"
        elif isinstance(exc, BusinessError):
            code = exc.code
        else:
            code = "EVALUATOR_ERROR"
        self._log(
            logging.WARNING,
            "Criterion fell back to default score",
            log_ctx,
            criterion_key=criterion.key,
            code=code,
            error=str(exc),
        )
        return CriterionResult(
            criterion_key=criterion.key,
            score=criterion.default_score,
            rationale="",
            evaluator_id=criterion.evaluator_id,
            failed=True,
            error_code=code,
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
