from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from jinja2 import Environment, StrictUndefined, Template, TemplateError as JinjaTemplateError
from pydantic import ValidationError

from libs.core import llm_provider, resource_codec, response
from libs.core.errors import (
    CardinalityError,
    FunctionError,
    IdentityConflictError,
    IdentityMissingError,
    InvocationError,
    SerializationError,
    TemplateError,
)
from libs.core.models import CredentialsType, Resource, RunFunctionRequest, RunFunctionResponse
from libs.tools.tool_config import ToolConfigResolver

from .agent import Agent, Invoker
from .input import Prompt

CREDENTIAL_NAME = "gpt"
CREDENTIAL_KEY = "OPENAI_API_KEY"
CREDENTIAL_BASE_URL_KEY = "OPENAI_BASE_URL"
CREDENTIAL_MODEL_KEY = "OPENAI_MODEL"

WATCHED_RESOURCE_KEY = "ops.crossplane.io/watched-resource"
IGNORED_RESOURCE_KEY = "ops.upbound.io/ignored-resource"

SUCCESS_CONDITION = "FunctionSuccess"
SUCCESS_REASON = "Success"

_TEMPLATES = Environment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=True)


@dataclass
class PipelineDetails:
    request: RunFunctionRequest
    response: RunFunctionResponse
    input: Prompt
    credential: str
    base_url: str = ""
    model: str = llm_provider.DEFAULT_MODEL


class Function:
    """Asks a language model to compose resources or act on a watched resource."""

    def __init__(self, ai: Optional[Invoker] = None, logger: Any = None) -> None:
        self.logger = logger or structlog.get_logger(service="function")
        self.ai = ai or Agent(logger=self.logger)

    def run_function(self, request: RunFunctionRequest) -> RunFunctionResponse:
        log = self.logger.bind(tag=request.meta.tag)
        log.info("running_function")

        rsp = response.response_to(request)
        composition = in_composition_pipeline(request)

        if not composition and should_ignore(request):
            response.condition_true(rsp, SUCCESS_CONDITION, SUCCESS_REASON)
            response.normal(rsp, "received an ignored resource, skipping")
            return rsp

        try:
            prompt = Prompt.model_validate(request.input)
        except ValidationError as exc:
            response.fatal(rsp, f"cannot get Function input from request: {exc}")
            return rsp

        try:
            credential, base_url, model = read_credentials(request)
        except FunctionError as exc:
            response.fatal(rsp, exc)
            return rsp

        details = PipelineDetails(
            request=request,
            response=rsp,
            input=prompt,
            credential=credential,
            base_url=base_url,
            model=model,
        )
        if composition:
            return self.composition_pipeline(log, details)
        return self.operation_pipeline(log, details)

    def composition_pipeline(self, log: Any, d: PipelineDetails) -> RunFunctionResponse:
        try:
            template = parse_template(d.input.template, "cannot parse userPrompt")
            xr = _wrap(
                resource_codec.encode_one,
                d.request.observed.composite,
                "cannot convert observed XR to YAML",
            )
            composed = _wrap(
                resource_codec.encode_many,
                d.request.observed.resources,
                "cannot convert observed composed resources to YAML",
            )
            prompt = render_template(
                template,
                {"composite": xr, "composed": composed, "input": d.input.instruction},
            )
        except FunctionError as exc:
            response.fatal(d.response, exc)
            return d.response

        log.debug("using_prompt", prompt=prompt)
        try:
            reply = self.ai.invoke(d.credential, d.input.system_prompt, prompt, d.base_url, d.model)
        except InvocationError as exc:
            response.fatal(d.response, f"failed to invoke model: {exc}")
            return d.response

        try:
            desired = resource_codec.decode_many(resource_codec.strip_framing(reply))
        except SerializationError as exc:
            log.debug("submitted_yaml_stream", result=reply, error=str(exc), is_error=True)
            response.fatal(d.response, f"did not receive a YAML stream from the model: {exc}")
            return d.response
        except (IdentityMissingError, IdentityConflictError) as exc:
            log.debug("submitted_yaml_stream", result=reply, error=str(exc), is_error=True)
            response.fatal(
                d.response,
                f"received a YAML stream with invalid resource identities: {exc}",
            )
            return d.response

        log.debug("received_yaml_manifests", resource_count=len(desired))
        d.response.desired.resources = desired
        return d.response

    def operation_pipeline(self, log: Any, d: PipelineDetails) -> RunFunctionResponse:
        try:
            template = parse_template(d.input.template, "failed to parse userPrompt as a template")
            watched = watched_resource(d.request)
            if watched is None:
                log.debug("no_resource_to_process")
                response.condition_true(d.response, SUCCESS_CONDITION, SUCCESS_REASON)
                return d.response
            resources = resource_codec.to_display_text(watched)
            prompt = render_template(
                template,
                {"input": d.input.instruction, "resources": resources},
            )
        except FunctionError as exc:
            response.fatal(d.response, exc)
            return d.response

        log.debug("using_prompt", prompt=prompt)
        try:
            reply = self.ai.invoke(d.credential, d.input.system_prompt, prompt, d.base_url, d.model)
        except InvocationError as exc:
            log.info("model_invocation_failed", error=str(exc))
            response.condition_true(d.response, SUCCESS_CONDITION, SUCCESS_REASON)
            response.warning(d.response, f"failed to invoke model: {exc}")
            return d.response

        desired: Dict[str, Resource] = {}
        try:
            name, resource = resource_codec.resource_from_text(resource_codec.strip_framing(reply))
            desired[name] = resource
        except SerializationError as exc:
            log.debug("no_structured_reply", error=str(exc))

        response.condition_true(d.response, SUCCESS_CONDITION, SUCCESS_REASON)
        response.normal(d.response, reply)
        d.response.desired.resources = desired
        return d.response


def in_composition_pipeline(request: RunFunctionRequest) -> bool:
    return request.observed.composite is not None


def should_ignore(request: RunFunctionRequest) -> bool:
    return request.context.get(IGNORED_RESOURCE_KEY) is True


def read_credentials(request: RunFunctionRequest) -> tuple[str, str, str]:
    credentials = request.credentials.get(CREDENTIAL_NAME)
    if credentials is None:
        raise FunctionError(
            f"cannot get {CREDENTIAL_KEY} from credential {CREDENTIAL_NAME!r}: "
            f"{CREDENTIAL_NAME}: credential not found"
        )
    if credentials.type != CredentialsType.data or credentials.credential_data is None:
        raise FunctionError(
            f"expected credential {CREDENTIAL_NAME!r} to be {CredentialsType.data.value!r}"
        )
    data = credentials.credential_data.data
    if CREDENTIAL_KEY not in data:
        raise FunctionError(
            f"credential {CREDENTIAL_NAME!r} is missing required key {CREDENTIAL_KEY!r}"
        )
    key = data[CREDENTIAL_KEY].strip("\n")
    base_url = data.get(CREDENTIAL_BASE_URL_KEY, "").strip("\n")
    model = llm_provider.DEFAULT_MODEL
    if CREDENTIAL_MODEL_KEY in data:
        model = data[CREDENTIAL_MODEL_KEY].strip("\n")
    return key, base_url, model


def watched_resource(request: RunFunctionRequest) -> Optional[Resource]:
    required = request.required_resources or request.extra_resources
    watched = required.get(WATCHED_RESOURCE_KEY)
    if watched is None or not watched.items:
        return None
    if len(watched.items) != 1:
        raise CardinalityError(
            f"too many resources sent to the function: expected 1, got {len(watched.items)}"
        )
    return watched.items[0]


def parse_template(text: str, context: str) -> Template:
    try:
        return _TEMPLATES.from_string(text)
    except JinjaTemplateError as exc:
        raise TemplateError(f"{context}: {exc}") from exc


def render_template(template: Template, variables: Dict[str, Any]) -> str:
    try:
        return template.render(**variables)
    except JinjaTemplateError as exc:
        raise TemplateError(f"cannot build prompt from template: {exc}") from exc


def _wrap(encode: Any, value: Any, context: str) -> str:
    try:
        return encode(value)
    except SerializationError as exc:
        raise SerializationError(f"{context}: {exc}") from exc


def _parse_optional_float(value: str | None) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_optional_int(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


def create_function_from_env(logger: Any = None) -> Function:
    logger = logger or structlog.get_logger(service="function")
    resolver = ToolConfigResolver(
        timeout_s=_parse_optional_float(os.getenv("MCP_TOOL_TIMEOUT_S")) or 30.0,
        logger=logger,
    )
    agent = Agent(
        resolver,
        timeout_s=_parse_optional_float(os.getenv("FUNCTION_LLM_TIMEOUT_S")) or 120.0,
        max_retries=_parse_optional_int(os.getenv("FUNCTION_LLM_MAX_RETRIES")) or 0,
        max_iterations=_parse_optional_int(os.getenv("FUNCTION_LLM_MAX_ITERATIONS"))
        or llm_provider.DEFAULT_MAX_ITERATIONS,
        logger=logger,
    )
    return Function(ai=agent, logger=logger)
