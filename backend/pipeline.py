"""
Answer generation pipeline.

validate() turns the raw JSON body into a GenerationRequest, build_prompt()
renders it into the chat messages sent to the model, and AnswerPipeline
glues both to the AnswerCache and the completion call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Mapping, Optional

from answer_cache import AnswerCache
from errors import CollaboratorError, MissingField, ValidationError
from helpers import _preview
from prompts import ANSWER_PROMPTS, CURRENT_PROMPT_VERSION, JOB_FIELDS

logger = logging.getLogger(__name__)

# request body key -> JobInfo attribute
JOB_BODY_KEYS = {
    "jobTitle": "title",
    "jobCompany": "company",
    "jobDescription": "description",
    "jobResponsibilities": "responsibilities",
}

Messages = List[Dict[str, str]]
GenerateFn = Callable[[Messages], str]


@dataclass(frozen=True)
class JobInfo:
    title: str = ""
    company: str = ""
    description: str = ""
    responsibilities: str = ""

    def as_dict(self) -> Dict[str, str]:
        # field order is the serialization order used in cache keys
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def is_empty(self) -> bool:
        return not any(v.strip() for v in self.as_dict().values())


@dataclass(frozen=True)
class GenerationRequest:
    question: str
    resume: str
    job: JobInfo = field(default_factory=JobInfo)


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str
    version: str = CURRENT_PROMPT_VERSION

    def messages(self) -> Messages:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def _required_text(raw: Mapping[str, Any], key: str, message: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MissingField(message, field=key)
    return value


def _optional_text(raw: Mapping[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def validate(raw: Optional[Mapping[str, Any]]) -> GenerationRequest:
    """Build a GenerationRequest, raising MissingField for a blank resume or question."""
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValidationError("Request body must be a JSON object")

    resume = _required_text(raw, "resume", "Resume text is required")
    question = _required_text(raw, "question", "Question is required")
    job = JobInfo(**{attr: _optional_text(raw, key) for key, attr in JOB_BODY_KEYS.items()})
    return GenerationRequest(question=question, resume=resume, job=job)


def build_prompt(request: GenerationRequest, version: str = CURRENT_PROMPT_VERSION) -> Prompt:
    """Render the chat prompt. Same request and version always give the same text."""
    try:
        template = ANSWER_PROMPTS[version]
    except KeyError:
        raise ValueError(f"Unknown prompt version: {version}")

    parts = [
        template["question"].format(question=request.question),
        template["resume"].format(resume=request.resume),
    ]
    job_lines = [
        f"{label}: {getattr(request.job, attr)}"
        for attr, label in JOB_FIELDS
        if getattr(request.job, attr).strip()
    ]
    if job_lines:
        parts.append("\n".join([template["job_header"], *job_lines]))

    return Prompt(system=template["system"], user="\n\n".join(parts), version=version)


class AnswerPipeline:
    """
    Cache-first answer generation.

    Args:
        cache: AnswerCache shared across requests
        generate: callable taking chat messages and returning the model text;
            raises CollaboratorError on failure
        prompt_version: key into prompts.ANSWER_PROMPTS
    """

    def __init__(self, cache: AnswerCache, generate: GenerateFn, prompt_version: str = CURRENT_PROMPT_VERSION):
        if prompt_version not in ANSWER_PROMPTS:
            raise ValueError(f"Unknown prompt version: {prompt_version}")
        self.cache = cache
        self.generate = generate
        self.prompt_version = prompt_version

    def execute(self, request: GenerationRequest) -> str:
        key = self.cache.key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Cache hit for question: %s", _preview(request.question))
            return cached

        logger.info("Generating answer for question: %s", _preview(request.question))
        prompt = build_prompt(request, self.prompt_version)
        text = self.generate(prompt.messages())
        answer = (text or "").strip()
        if not answer:
            raise CollaboratorError("The AI service returned an empty answer", status_code=500)

        self.cache.put(key, answer)
        return answer

    def run(self, raw: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        request = validate(raw)
        return {"answer": self.execute(request)}
