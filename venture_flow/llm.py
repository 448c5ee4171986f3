"""OpenAI-backed generation client shared by every stage."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Callable, Dict, List, Mapping

from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from .config import LLMSettings, PipelineSettings, get_llm_settings, get_pipeline_settings
from .contracts import StageContract
from .errors import EmptyOutputError, InputValidationError, OutputValidationError, ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptTemplate:
    """A named prompt: system instructions plus a renderer for the user turn."""

    name: str
    system_prompt: str
    render: Callable[[Any], str]
    temperature: float | None = None
    max_tokens: int | None = None
    options: Mapping[str, Any] | None = None


def _parse_structured_response(raw_text: str) -> Any:
    """Decode the model output as JSON, tolerating a fenced code block."""

    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line.rstrip() for line in text.splitlines()]
        if len(lines) >= 2:
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return json.loads(text)


def _compact_errors(exc: ValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


def _schema_instructions(output_model: type[BaseModel]) -> str:
    schema = json.dumps(output_model.model_json_schema(), indent=2)
    return dedent(
        """
        Respond with a single JSON object that validates against this JSON schema.
        Do not wrap it in markdown and do not add commentary.
        """
    ).strip() + f"\n\n{schema}"


class GenerationClient:
    """Issue one (template, input, contract) call and return a validated model.

    The client never retries; retry policy belongs to the orchestrator.
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        settings: PipelineSettings | None = None,
        llm_settings: LLMSettings | None = None,
    ) -> None:
        self._client = client
        self._settings = settings or get_pipeline_settings()
        self._llm_settings = llm_settings
        self.call_count = 0

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def _get_client(self, stage: str) -> AsyncOpenAI:
        """Return the provider client, creating it from settings on first use."""

        if self._client is not None:
            return self._client
        llm_settings = self._llm_settings or get_llm_settings()
        if not llm_settings.openai_api_key:
            raise ProviderError("OPENAI_API_KEY is not configured.", stage=stage, retryable=False)
        self._client = AsyncOpenAI(
            api_key=llm_settings.openai_api_key,
            base_url=llm_settings.openai_base_url,
            timeout=self._settings.request_timeout,
            max_retries=0,
        )
        return self._client

    @staticmethod
    def validate_input(contract: StageContract, payload: Any) -> BaseModel:
        """Check *payload* against the stage input contract before any call."""

        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        try:
            return contract.input_model.model_validate(payload)
        except ValidationError as exc:
            raise InputValidationError(
                f"Invalid input for stage '{contract.stage.value}'.",
                stage=contract.stage.value,
                errors=_compact_errors(exc),
            ) from exc

    async def generate(
        self,
        template: PromptTemplate,
        payload: Any,
        contract: StageContract,
        *,
        model: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> BaseModel:
        stage = contract.stage.value
        validated = self.validate_input(contract, payload)
        user_prompt = f"{template.render(validated).strip()}\n\n{_schema_instructions(contract.output_model)}"

        extra_body: Dict[str, Any] = {}
        if self._settings.provider_options:
            extra_body.update(template.options or {})
        extra_body.update(options or {})

        request: Dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": [
                {"role": "system", "content": template.system_prompt.strip()},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": template.temperature if template.temperature is not None else self._settings.temperature,
            "max_tokens": template.max_tokens or self._settings.max_tokens,
            "response_format": {"type": "json_object"},
        }
        if extra_body:
            request["extra_body"] = extra_body

        client = self._get_client(stage)
        self.call_count += 1
        started = time.perf_counter()
        try:
            response = await client.chat.completions.create(**request)
        except APIError as exc:
            logger.warning("Provider call failed for stage %s: %s", stage, exc)
            status_code = getattr(exc, "status_code", None)
            raise ProviderError(
                f"Provider call failed for stage '{stage}': {exc}",
                stage=stage,
                status_code=status_code,
                # Connection errors and throttling are transient; other 4xx are not.
                retryable=status_code is None or status_code == 429 or status_code >= 500,
            ) from exc
        logger.debug(
            "Stage %s (%s) answered in %.0f ms", stage, contract.version, (time.perf_counter() - started) * 1000
        )

        choice = response.choices[0] if response.choices else None
        message = choice.message.content if choice else None
        if choice is not None and getattr(choice, "finish_reason", None) == "content_filter":
            raise EmptyOutputError(f"Stage '{stage}' output was withheld by the provider.", stage=stage)
        if not message or not message.strip():
            raise EmptyOutputError(f"Stage '{stage}' returned no content.", stage=stage)

        try:
            data = _parse_structured_response(message)
        except json.JSONDecodeError as exc:
            raise OutputValidationError(
                f"Stage '{stage}' returned malformed JSON.",
                stage=stage,
                errors=[{"loc": [], "msg": str(exc), "type": "json_invalid"}],
                raw=message,
            ) from exc
        if data is None or data == {}:
            raise EmptyOutputError(f"Stage '{stage}' returned an empty payload.", stage=stage)

        try:
            return contract.output_model.model_validate(data)
        except ValidationError as exc:
            raise OutputValidationError(
                f"Stage '{stage}' output does not match contract {contract.key}.",
                stage=stage,
                errors=_compact_errors(exc),
                raw=message,
            ) from exc
