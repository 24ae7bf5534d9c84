from __future__ import annotations

import base64
import re
from dataclasses import replace
from typing import Any
from urllib.parse import urlparse

from podforge_contracts.episode import PersonaGender, PersonaRole, SourceType
from podforge_studio.domain.models import (
    EpisodeDraft,
    FieldError,
    PersonaDraft,
    SubmitResult,
    ValidationResult,
    WizardState,
    WizardStep,
)
from podforge_studio.infrastructure.logging import get_logger

log = get_logger(__name__)

MIN_TEXT_CHARS = 100
MIN_PERSONAS = 1
MAX_PERSONAS = 4

YOUTUBE_PATTERN = re.compile(r"^(https?://)?(www\.)?(youtube\.com/(watch\?v=|embed/|shorts/)|youtu\.be/)")

ARCHETYPES: dict[str, tuple[str, str]] = {
    "curious": (
        "Curious Explorer",
        "Asks thoughtful questions and seeks deeper understanding. Speaks with genuine interest and uses phrases "
        "like \"That's fascinating!\" and \"Can you tell me more about that?\" Uses a warm, engaging tone.",
    ),
    "expert": (
        "Subject Expert",
        "Provides deep insights and knowledge with confidence. Speaks clearly and uses professional terminology "
        "when appropriate, but makes complex topics accessible. Uses phrases like \"Based on my research...\" and "
        "\"What's interesting is...\"",
    ),
    "storyteller": (
        "Storyteller",
        "Weaves narratives and examples into the conversation. Speaks with vivid descriptions and uses phrases "
        "like \"Let me share a story...\" and \"Imagine this scenario...\" Uses expressive language and varied pacing.",
    ),
    "skeptic": (
        "Thoughtful Skeptic",
        "Challenges assumptions constructively and asks probing questions. Speaks with measured skepticism and uses "
        "phrases like \"But wait, what about...\" and \"I'm not sure I agree because...\" Uses logical reasoning and "
        "respectful disagreement.",
    ),
    "enthusiast": (
        "Enthusiast",
        "Brings energy and excitement to the conversation. Speaks with high energy and uses phrases like "
        "\"This is amazing!\" and \"I love this!\" Uses upbeat tone and frequent positive affirmations.",
    ),
    "analyst": (
        "Analyst",
        "Breaks down complex topics systematically. Speaks methodically and uses phrases like \"Let's break this "
        "down...\" and \"The key factors are...\" Uses structured explanations and clear transitions.",
    ),
}

_DRAFT_FIELDS = {"title", "description", "source_type", "source_url", "source_content", "personas", "generate_cover"}
_PERSONA_FIELDS = {"name", "role", "gender", "personality", "voice_id"}


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def is_valid_youtube_url(url: str) -> bool:
    return is_valid_url(url) and bool(YOUTUBE_PATTERN.match(url.strip()))


class WizardController:
    """Guided episode creation: Source -> Personas -> Preview -> Generate.

    Each step has a validation gate. Failures are returned as
    ``ValidationResult`` values with field-scoped messages and never raised.
    The caller creates the episode from ``submit()`` and then calls ``reset()``.
    """

    def __init__(self, draft: EpisodeDraft | None = None) -> None:
        self.state = WizardState(draft=draft or EpisodeDraft())

    @property
    def draft(self) -> EpisodeDraft:
        return self.state.draft

    @staticmethod
    def steps() -> list[WizardStep]:
        return list(WizardStep)

    def current_step(self) -> WizardStep:
        return WizardStep(self.state.step_index)

    def go_next(self) -> ValidationResult:
        step = self.current_step()
        if step is WizardStep.GENERATE:
            return ValidationResult.fail("step", "Already at the final step")
        result = self.validate_step(step)
        if not result.ok:
            log.debug("wizard.gate_refused step=%s errors=%s", step.name, result.messages())
            return result
        self.state.step_index += 1
        return result

    def go_back(self) -> bool:
        if self.state.step_index <= 0:
            return False
        self.state.step_index -= 1
        return True

    def update_draft(self, changes: dict[str, Any] | None = None, **fields: Any) -> None:
        updates = {**(changes or {}), **fields}
        unknown = set(updates) - _DRAFT_FIELDS
        if unknown:
            raise TypeError(f"Unknown draft field(s): {', '.join(sorted(unknown))}")
        if "source_type" in updates:
            updates["source_type"] = SourceType(updates["source_type"])
        if "personas" in updates:
            updates["personas"] = [_as_persona_draft(p) for p in updates["personas"]]
        for key, value in updates.items():
            setattr(self.state.draft, key, value)

    # Personas

    def add_persona(self, persona: PersonaDraft | None = None) -> ValidationResult:
        if len(self.draft.personas) >= MAX_PERSONAS:
            return ValidationResult.fail("personas", f"Maximum {MAX_PERSONAS} personas allowed")
        self.draft.personas.append(persona or PersonaDraft())
        return ValidationResult()

    def remove_persona(self, index: int) -> ValidationResult:
        if len(self.draft.personas) <= MIN_PERSONAS:
            return ValidationResult.fail("personas", "At least one persona is required")
        if not 0 <= index < len(self.draft.personas):
            return ValidationResult.fail("personas", f"No persona at position {index + 1}")
        del self.draft.personas[index]
        return ValidationResult()

    def update_persona(self, index: int, **fields: Any) -> ValidationResult:
        if not 0 <= index < len(self.draft.personas):
            return ValidationResult.fail("personas", f"No persona at position {index + 1}")
        unknown = set(fields) - _PERSONA_FIELDS
        if unknown:
            raise TypeError(f"Unknown persona field(s): {', '.join(sorted(unknown))}")
        if "role" in fields:
            fields["role"] = PersonaRole(fields["role"])
        if "gender" in fields and fields["gender"] is not None:
            fields["gender"] = PersonaGender(fields["gender"])
        self.draft.personas[index] = replace(self.draft.personas[index], **fields)
        return ValidationResult()

    def apply_archetype(self, index: int, archetype_id: str) -> bool:
        archetype = ARCHETYPES.get(archetype_id)
        if archetype is None:
            return False
        return self.update_persona(index, personality=archetype[1]).ok

    # Sources

    def attach_pdf(self, data: bytes, filename: str | None = None) -> ValidationResult:
        """Accept an uploaded PDF; the draft carries it base64-encoded."""
        if filename is not None and not filename.lower().endswith(".pdf"):
            return ValidationResult.fail("source_content", "Please upload a PDF file")
        if not data:
            return ValidationResult.fail("source_content", "The selected file is empty")
        self.update_draft(source_type=SourceType.PDF, source_content=base64.b64encode(data).decode("ascii"))
        log.debug("wizard.pdf_attached filename=%s bytes=%s", filename, len(data))
        return ValidationResult()

    # Validation

    def validate_step(self, step: WizardStep) -> ValidationResult:
        if step is WizardStep.SOURCE:
            return ValidationResult(errors=tuple(self._source_errors()))
        if step is WizardStep.PERSONAS:
            return ValidationResult(errors=tuple(self._persona_errors()))
        return ValidationResult()

    def _source_errors(self) -> list[FieldError]:
        draft = self.draft
        errors: list[FieldError] = []
        if not draft.title.strip():
            errors.append(FieldError("title", "Please enter a title for your podcast"))

        source_type = draft.source_type
        if source_type is SourceType.TEXT:
            content = draft.source_content
            if not content.strip() or len(content) < MIN_TEXT_CHARS:
                errors.append(
                    FieldError("source_content", f"Please enter at least {MIN_TEXT_CHARS} characters of content")
                )
        elif source_type is SourceType.URL:
            if not is_valid_url(draft.source_url):
                errors.append(FieldError("source_url", "Please enter a valid URL"))
        elif source_type is SourceType.YOUTUBE:
            if not is_valid_url(draft.source_url):
                errors.append(FieldError("source_url", "Please enter a valid URL"))
            elif not is_valid_youtube_url(draft.source_url):
                errors.append(FieldError("source_url", "Please enter a valid YouTube URL"))
        elif source_type is SourceType.PDF:
            if not draft.source_content:
                errors.append(FieldError("source_content", "Please upload a PDF file"))
        return errors

    def _persona_errors(self) -> list[FieldError]:
        personas = self.draft.personas
        if len(personas) < MIN_PERSONAS:
            return [FieldError("personas", "At least one persona is required")]
        if len(personas) > MAX_PERSONAS:
            return [FieldError("personas", f"Maximum {MAX_PERSONAS} personas allowed")]
        return [
            FieldError(f"personas[{i}].name", f"Please enter a name for persona {i + 1}")
            for i, persona in enumerate(personas)
            if not persona.name.strip()
        ]

    # Terminal transition

    def submit(self) -> SubmitResult:
        errors = self._source_errors() + self._persona_errors()
        if errors:
            return SubmitResult(errors=tuple(errors))
        request = self.draft.to_request()
        log.info("wizard.submit title=%s source=%s personas=%s", request.title, request.source_type.value, len(request.personas))
        return SubmitResult(request=request)

    def reset(self) -> None:
        self.state = WizardState()


def _as_persona_draft(value: Any) -> PersonaDraft:
    if isinstance(value, PersonaDraft):
        return value
    if isinstance(value, dict):
        data = dict(value)
        if "role" in data:
            data["role"] = PersonaRole(data["role"])
        if data.get("gender") is not None:
            data["gender"] = PersonaGender(data["gender"])
        if data.get("personality") is None:
            data["personality"] = ""
        return PersonaDraft(**data)
    return PersonaDraft.from_persona(value)
