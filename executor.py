# executor.py

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from api_client import CompletionOptions
from exceptions import ParseError
from prompts import RESPONSE_SCHEMAS, VISION_INSTRUCTION
from router import ProviderRouter
from schemas import RECORD_MODELS, Document, DocumentType, Template
from utils import log

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def compose_prompt(template: Template, document: Document, document_type: DocumentType) -> str:
    parts = [template.body_text.strip()]
    if document.is_scanned:
        parts.append(VISION_INSTRUCTION.strip())
    parts.append("Return a JSON object with this structure:\n" + RESPONSE_SCHEMAS[document_type].strip())
    parts.append("Text to extract from:\n" + (document.raw_text or ""))
    return "\n\n".join(parts)


def _first_json_object(text: str) -> Optional[str]:
    """Returns the first balanced {...} block, ignoring braces inside string literals."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_response(raw_response: str) -> Dict[str, Any]:
    """
    Parses a model response into a JSON object.
    Code-fence markers are stripped first; failing that, the first balanced
    object in the text is used with trailing commas removed. Anything else is
    a ParseError, with no attempt to guess at partial structure.
    """
    if not isinstance(raw_response, str) or not raw_response.strip():
        raise ParseError("AI response was empty", raw_response or "")

    candidate = _CODE_FENCE.sub("", raw_response.strip())
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError:
        block = _first_json_object(candidate)
        if block is None:
            raise ParseError("AI response did not contain a JSON object", raw_response)
        try:
            payload = json.loads(_TRAILING_COMMA.sub(r"\1", block))
        except json.JSONDecodeError as e:
            raise ParseError(f"AI response is not valid JSON: {e.msg}", raw_response) from e

    if not isinstance(payload, dict):
        raise ParseError("AI response JSON is not an object", raw_response)
    return payload


def build_record(payload: Dict[str, Any], document_type: DocumentType):
    """Unwraps the document-type root key and validates the body into its record model."""
    body = payload.get(document_type.value)
    if not isinstance(body, dict):
        body = payload
    body = {key: value for key, value in body.items() if key not in ("documentType", "document_type")}
    if body.get("confidence") is None and payload.get("confidence") is not None:
        body["confidence"] = payload["confidence"]

    model = RECORD_MODELS[document_type]
    try:
        return model.model_validate({**body, "document_type": document_type})
    except ValidationError as e:
        raise ParseError(
            f"AI response does not match the {document_type.value} structure: {e.error_count()} error(s)",
            json.dumps(payload)[:2000],
        ) from e


@dataclass
class ExecutionResult:
    record: Any
    provider: str
    attempts: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    latency: float = 0.0


class ExtractionExecutor:
    def __init__(self, router: ProviderRouter):
        self.router = router

    async def execute(self, template: Template, document: Document, document_type: DocumentType,
                      chain: Optional[Sequence[str]] = None) -> ExecutionResult:
        prompt = compose_prompt(template, document, document_type)
        options = CompletionOptions(temperature=template.temperature, max_tokens=template.max_output_tokens)
        if document.is_scanned and document.content:
            options.image = document.content
            options.image_mime_type = document.mime_type

        log.info(f"[executor] Template '{template.id}' -> preferred provider '{template.provider_preference}'"
                 f"{' (vision)' if options.has_image else ''}.")
        result = await self.router.complete(prompt, options, preference=template.provider_preference, chain=chain)

        try:
            payload = parse_json_response(result.text)
        except ParseError:
            log.error(f"[executor] Unparseable response from '{result.provider}': {result.text[:200]!r}")
            raise
        record = build_record(payload, document_type)
        return ExecutionResult(
            record=record,
            provider=result.provider,
            attempts=result.attempts,
            confidence=record.confidence,
            latency=result.latency,
        )
