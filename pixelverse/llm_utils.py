"""LLM call helpers: plain-text calls and schema-validated calls with retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from .local_llm import LocalLLMError, call_ollama_chat
from .logging_utils import log_error, log_llm

ModelT = TypeVar("ModelT", bound=BaseModel)
DEFAULT_TIMEOUT_SECONDS = 120.0


@dataclass(slots=True)
class ValidationFeedback:
    """Structured feedback for retrying failed LLM schema outputs."""

    llm_text: str
    issues: Sequence[str]


def _truncate_preview(value: Any, *, limit: int = 80) -> str:
    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into correction instructions for the model.

    Each issue names the field path, the error, its type and a preview of the
    offending input, so the next attempt can fix exactly what was wrong.
    """

    issues: list[str] = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            details += f" | received={_truncate_preview(err.get('input'))}"
        issues.append(details)

    if not issues:
        issues.append("root: response did not match the expected schema")

    instructions = [
        "Your previous JSON response failed to validate against the required schema.",
        "Produce a corrected response that strictly matches the schema.",
        "Do not include explanations or code fences; return only valid JSON.",
        "Issues detected:",
    ]
    instructions.extend(f"- {issue}" for issue in issues)
    return ValidationFeedback(llm_text="\n".join(instructions), issues=issues)


def _combine(*sections: str) -> str:
    return "\n\n".join(section.strip() for section in sections if section and section.strip())


async def call_llm_text(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
) -> str:
    """Single free-text call. No retries; failures propagate to the caller."""

    if llm_provider.lower() == "ollama":
        call = call_ollama_chat(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            llm_model=llm_model,
            timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
        )
        return await asyncio.wait_for(call, timeout=timeout) if timeout else await call

    @llm.call(provider=llm_provider, model=llm_model)
    async def _invoke(prompt: str) -> str:
        return prompt

    call = _invoke(_combine(system_prompt, user_prompt))
    response = await asyncio.wait_for(call, timeout=timeout) if timeout else await call
    return response.content


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured LLM call with validation-aware retries.

    Only ``ValidationError`` triggers another attempt; the validation feedback
    is appended to the original prompt so the model keeps its full context.
    Timeouts, provider errors and the final validation failure propagate.
    """

    base_user_prompt = user_prompt.strip()
    feedback_payload: ValidationFeedback | None = None
    use_local_llm = llm_provider.lower() == "ollama"

    remote_invoke: Callable[[str], Any] | None = None
    if not use_local_llm:

        @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
        async def _invoke(prompt: str) -> str:
            return prompt

        remote_invoke = _invoke

    async def _bounded(awaitable: Any) -> Any:
        return await asyncio.wait_for(awaitable, timeout=timeout) if timeout else await awaitable

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"retry {attempt_number}/{max_attempts} for {response_model.__name__}; "
                    "attempting schema correction"
                )
            user_section = _combine(
                base_user_prompt, feedback_payload.llm_text if feedback_payload else ""
            )
            try:
                if use_local_llm:
                    raw_response = await _bounded(
                        call_ollama_chat(
                            system_prompt=system_prompt,
                            user_prompt=user_section,
                            llm_model=llm_model,
                            timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
                            json_mode=True,
                        )
                    )
                    return response_model.model_validate_json(raw_response)

                if remote_invoke is None:
                    raise RuntimeError("Remote LLM invoke is not initialized.")
                return await _bounded(remote_invoke(_combine(system_prompt, user_section)))
            except ValidationError as exc:
                feedback_payload = feedback_builder(exc)
                log_error(
                    f"schema validation failed for {response_model.__name__} "
                    f"(attempt {attempt_number}/{max_attempts})"
                )
                for issue in feedback_payload.issues:
                    log_error(f"  - {issue}")
                raise
            except LocalLLMError as exc:
                raise RuntimeError(f"Local LLM provider error ({llm_provider}): {exc}") from exc

    raise RuntimeError("LLM retry mechanism exited unexpectedly")


__all__ = [
    "ValidationFeedback",
    "inject_validation_feedback",
    "call_llm_text",
    "call_llm_with_retries",
]
