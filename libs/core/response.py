from __future__ import annotations

from datetime import timedelta

from .models import (
    DEFAULT_TTL,
    Condition,
    ConditionStatus,
    ResponseMeta,
    Result,
    RunFunctionRequest,
    RunFunctionResponse,
    Severity,
    Target,
)


def response_to(request: RunFunctionRequest, ttl: timedelta = DEFAULT_TTL) -> RunFunctionResponse:
    return RunFunctionResponse(
        meta=ResponseMeta(tag=request.meta.tag, ttl=ttl.total_seconds()),
        desired=request.desired.model_copy(deep=True),
        context=dict(request.context),
    )


def fatal(response: RunFunctionResponse, error: BaseException | str) -> None:
    response.results.append(Result(severity=Severity.fatal, message=str(error)))


def warning(response: RunFunctionResponse, message: str) -> None:
    response.results.append(Result(severity=Severity.warning, message=message))


def normal(response: RunFunctionResponse, message: str) -> None:
    response.results.append(Result(severity=Severity.normal, message=message))


def condition_true(
    response: RunFunctionResponse,
    condition_type: str,
    reason: str,
    target: Target = Target.composite_and_claim,
) -> Condition:
    condition = Condition(
        type=condition_type,
        status=ConditionStatus.true,
        reason=reason,
        target=target,
    )
    response.conditions.append(condition)
    return condition


def is_fatal(response: RunFunctionResponse) -> bool:
    return any(result.severity == Severity.fatal for result in response.results)
