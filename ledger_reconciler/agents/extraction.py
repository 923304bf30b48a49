"""
Extraction Agent

DESIGN DECISION: The LLM is a TRANSLATOR, not a bookkeeper.

It turns one user message (text, voice transcript or photo) into raw
candidate rows, and one mass-edit instruction into a structured filter.
Everything it returns is untrusted: rows are validated into Candidate /
MassEditInstruction models, invalid rows are dropped, and the
reconciliation pipeline decides what can actually be committed.

CRITICAL BOUNDARIES:
- CAN: Propose amounts, currencies, accounts, categories, tags, dates
- CANNOT: Bind ids, create accounts, or write to the ledger
- MUST: Return JSON only
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_reconciler.config import GeminiSettings, get_settings
from ledger_reconciler.models.candidate import Candidate
from ledger_reconciler.models.mass_edit import MassEditInstruction


logger = structlog.get_logger(__name__)


class ExtractionError(Exception):
    """The extraction collaborator could not produce a usable answer."""
    pass


class ExtractionClient(ABC):
    """
    Extraction collaborator contract.

    Implementations return untrusted candidates; an empty list means
    "nothing recognized", ExtractionError means "could not answer".
    """

    @abstractmethod
    async def parse_transaction(
        self,
        text: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
    ) -> list[Candidate]:
        pass

    @abstractmethod
    async def parse_transaction_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
        caption: Optional[str] = None,
    ) -> list[Candidate]:
        pass

    @abstractmethod
    async def parse_mass_edit_instruction(
        self,
        text: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
    ) -> MassEditInstruction:
        pass


def extract_json_block(text: str) -> Any:
    """Parse the outermost JSON object or array in a model reply."""
    cleaned = (text or "").strip()
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i >= 0]
    if not starts:
        raise ExtractionError("No JSON in model response")
    start = min(starts)
    closer = "}" if cleaned[start] == "{" else "]"
    end = cleaned.rfind(closer) + 1
    if end <= start:
        raise ExtractionError("Unterminated JSON in model response")
    try:
        return json.loads(cleaned[start:end])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Invalid JSON in model response: {e}") from e


def rows_to_candidates(data: Any, raw_text: str) -> list[Candidate]:
    """
    Validate raw rows into candidates.

    Accepts {"transactions": [...]}, a bare list, or a single object.
    Rows that fail validation are dropped and logged.
    """
    if isinstance(data, dict):
        rows = data.get("transactions", [data] if "direction" in data else [])
    elif isinstance(data, list):
        rows = data
    else:
        rows = []

    candidates = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            continue
        row = {**row}
        if not (row.get("raw_text") or row.get("rawText")):
            row["raw_text"] = raw_text
        try:
            candidates.append(Candidate.model_validate(row))
        except ValidationError as e:
            logger.warning("extraction_row_dropped", index=index, errors=e.error_count())
    return candidates


TRANSACTION_PROMPT = """You extract money movements for a personal-finance ledger.

User message:
{text}

User accounts: {accounts}
User categories: {categories}
User tags: {tags}
User timezone: {timezone}

Return ONLY a JSON object:
{{"transactions": [{{
  "direction": "income" | "expense" | "transfer",
  "amount": number,
  "currency": "ISO code or null",
  "account": "account mention or null",
  "toAccount": "target account mention for transfers or null",
  "category": "one of the categories or null",
  "description": "short merchant/purpose",
  "tagText": "tag mention or null",
  "normalizedTag": "normalized tag or null",
  "tagConfidence": number between 0 and 1,
  "transactionDate": "ISO date or null",
  "convertToCurrency": "target currency of an exchange or null",
  "convertedAmount": number or null
}}]}}

Rules:
- One row per distinct money movement; do not invent movements
- Amounts are positive; direction carries the sign
- Leave a field null when it is not stated"""


MASS_EDIT_PROMPT = """You convert a bulk-edit instruction for a personal-finance ledger into a filter.

Instruction:
{text}

User accounts: {accounts}
User categories: {categories}
User tags: {tags}
User timezone: {timezone}

Return ONLY a JSON object:
{{"action": "update" | "delete",
  "mode": "single" | "batch",
  "filter": {{"direction", "currency", "amount", "category", "description", "tag", "account", "toAccount", "transactionDate"}},
  "exclude": same shape as filter or null,
  "update": same shape as filter or null,
  "deleteAll": true | false}}

Only include filter fields the user actually stated."""


class GeminiExtractionAgent(ExtractionClient):
    """
    Extraction collaborator backed by Gemini.

    Calls are retried with exponential backoff; the last error is
    re-raised as ExtractionError.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate(self, content: Any) -> str:
        response = await self._model.generate_content_async(content)
        return response.text

    async def _ask(self, content: Any) -> Any:
        try:
            reply = await self._generate(content)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error("extraction_call_failed", error=str(e))
            raise ExtractionError(f"Gemini request failed: {e}") from e
        return extract_json_block(reply)

    @staticmethod
    def _context(
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
    ) -> dict[str, str]:
        return {
            "accounts": ", ".join(account_names) or "none",
            "categories": ", ".join(category_names) or "none",
            "tags": ", ".join(tag_names) or "none",
            "timezone": timezone,
        }

    async def parse_transaction(
        self,
        text: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
    ) -> list[Candidate]:
        prompt = TRANSACTION_PROMPT.format(
            text=text,
            **self._context(category_names, tag_names, account_names, timezone),
        )
        data = await self._ask(prompt)
        return rows_to_candidates(data, text)

    async def parse_transaction_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
        caption: Optional[str] = None,
    ) -> list[Candidate]:
        prompt = TRANSACTION_PROMPT.format(
            text=caption or "(receipt or banking screenshot attached)",
            **self._context(category_names, tag_names, account_names, timezone),
        )
        data = await self._ask([prompt, {"mime_type": mime_type, "data": image_bytes}])
        return rows_to_candidates(data, caption or "")

    async def parse_mass_edit_instruction(
        self,
        text: str,
        category_names: list[str],
        tag_names: list[str],
        account_names: list[str],
        timezone: str,
    ) -> MassEditInstruction:
        prompt = MASS_EDIT_PROMPT.format(
            text=text,
            **self._context(category_names, tag_names, account_names, timezone),
        )
        data = await self._ask(prompt)
        if not isinstance(data, dict):
            raise ExtractionError("Mass-edit instruction must be a JSON object")
        try:
            return MassEditInstruction.model_validate({**data, "raw_text": text})
        except ValidationError as e:
            raise ExtractionError(f"Invalid mass-edit instruction: {e.error_count()} errors") from e
