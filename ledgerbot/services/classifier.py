from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from ledgerbot.core.errors import ClassificationFailure
from ledgerbot.providers.base import ProviderError
from ledgerbot.providers.chat import AIProviderManager
from ledgerbot.schemas.intent import FinancialIntent, IntentKind

SYSTEM_PROMPT = (
    "You are the parser of a personal finance assistant that receives chat messages "
    "(typed or transcribed from voice notes, usually in Brazilian Portuguese). "
    "Reply ONLY with a JSON object in this exact format:\n"
    "{\n"
    '  "kind": "income | expense | doubt | balance_query | statement_query",\n'
    '  "amount": <number, 0 when unknown>,\n'
    '  "description": "short description",\n'
    '  "category": "suggested category name or null",\n'
    '  "payment_method": "instant_transfer | debit | credit | cash | bill | undetermined",\n'
    '  "completeness": "ok | incomplete"\n'
    "}\n"
    "Rules:\n"
    "- income: money received (salary, sale, refund, pix received).\n"
    "- expense: money spent or paid.\n"
    "- balance_query: the user asks how much money they have.\n"
    "- statement_query: the user asks for recent transactions.\n"
    "- doubt: the message is not about finances or cannot be understood.\n"
    "- For income/expense, never leave description empty; use 'General expense' or "
    "'General income' when nothing better is available.\n"
    "- For income/expense without a numeric amount, set amount to 0 and completeness to incomplete.\n"
    "- For queries, amount is 0, description is empty and category is null.\n"
    "- Map card purchases to credit, pix to instant_transfer, boleto to bill."
)

JSON_RESPONSE_FORMAT: dict[str, Any] = {"type": "json_object"}

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def build_command_pattern(tokens: list[str]) -> re.Pattern[str]:
    """Exact match of any token, optional leading slash, case-insensitive."""
    alternatives = "|".join(re.escape(token.strip().lower()) for token in tokens if token.strip())
    if not alternatives:
        return re.compile(r"(?!)")
    return re.compile(rf"^/?(?:{alternatives})$", re.IGNORECASE)


def extract_json_payload(content: str) -> dict[str, Any]:
    """Parse the model reply, tolerating code fences or text around the object."""
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise ValueError("JSON payload not found in model response")
    payload = json.loads(match.group(0))
    if not isinstance(payload, dict):
        raise ValueError("Model response is not a JSON object")
    return payload


class IntentClassifier:
    def __init__(
        self,
        manager: AIProviderManager,
        balance_commands: list[str],
        statement_commands: list[str],
        model: str | None = None,
    ):
        self.manager = manager
        self.model = model
        self._balance = build_command_pattern(balance_commands)
        self._statement = build_command_pattern(statement_commands)

    def match_command(self, text: str | None) -> FinancialIntent | None:
        """Fixed command tokens resolve without calling the model."""
        if not text:
            return None
        normalized = text.strip().lower()
        if self._balance.match(normalized):
            return FinancialIntent(kind=IntentKind.BALANCE_QUERY)
        if self._statement.match(normalized):
            return FinancialIntent(kind=IntentKind.STATEMENT_QUERY)
        return None

    async def classify(self, text: str) -> FinancialIntent:
        """
        Turn free text into a FinancialIntent.

        Raises:
            ClassificationFailure: on provider errors, an empty reply or a reply
                that is not a valid intent object
        """
        command = self.match_command(text)
        if command is not None:
            return command

        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": text},
        ]
        try:
            response = await self.manager.chat_completion(
                messages=messages,
                model=self.model,
                temperature=0,
                max_tokens=300,
                response_format=JSON_RESPONSE_FORMAT,
            )
        except ProviderError as exc:
            raise ClassificationFailure(f"Classifier provider failed: {exc}") from exc

        if not response.content.strip():
            raise ClassificationFailure("Classifier returned an empty response")

        try:
            intent = FinancialIntent.model_validate(extract_json_payload(response.content))
        except (ValueError, ValidationError) as exc:
            raise ClassificationFailure(f"Classifier returned an invalid intent: {exc}") from exc

        logger.info(
            "Message classified",
            kind=intent.kind.value,
            completeness=intent.completeness.value,
            provider=response.provider,
        )
        return intent
