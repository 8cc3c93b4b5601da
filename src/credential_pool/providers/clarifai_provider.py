import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
import litellm

from ..db_models import Account
from ..error_handler import ProviderCallFailed
from ..types import ProviderResponse
from .provider_interface import ProviderInterface

lib_logger = logging.getLogger("credential_pool")

OPENAI_COMPAT_BASE = "https://api.clarifai.com/v2/ext/openai/v1"
API_BASE = "https://api.clarifai.com/v2"

DEFAULT_CATEGORIES = (
    "Groceries, Transport, Food, Shopping, Bills, Entertainment, "
    "Health, Medicine, Salary, Gift"
)

_CODE_FENCE = re.compile(r"```(?:json)?\n?")


@dataclass
class ChatRequest:
    messages: List[Dict[str, str]]
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    expect_json: bool = True


def build_transaction_prompt(message: str, categories: Sequence[Dict[str, str]] = ()) -> str:
    if categories:
        category_list = ", ".join(
            f'"{c["name"]}" ({c.get("type", "expense")})' for c in categories
        )
    else:
        category_list = DEFAULT_CATEGORIES

    return f"""You are a financial transaction parser for an expense tracker. Users may write in English, Bengali, Banglish or mixed language.

Parse the user's message and extract ALL transactions mentioned.

RULES:
1. Return ONLY valid JSON, nothing else
2. If the message is NOT about money, return: {{"valid": false, "reason": "Not a transaction"}}
3. Currencies: Taka (tk, taka, ৳) = BDT, Dollar ($) = USD, Rupee (₹) = INR
4. Expense = negative amount, Income = positive amount
5. If no category matches, use "other"
6. Extract the date if mentioned, otherwise use "today"
7. Bengali digits ০-৯ are numbers too

USER'S CATEGORIES: {category_list}

OUTPUT FORMAT:
{{"valid": true, "transactions": [{{"type": "expense" or "income", "amount": number, "description": "brief description", "category": "category name or 'other'", "date": "YYYY-MM-DD" or "today", "currency": "BDT" or "USD" or "INR"}}]}}

USER MESSAGE: {message}

RETURN ONLY JSON:"""


def transaction_parse_request(
    message: str, categories: Sequence[Dict[str, str]] = ()
) -> ChatRequest:
    return ChatRequest(
        messages=[
            {"role": "system", "content": "You are a transaction parsing AI. Return ONLY valid JSON responses."},
            {"role": "user", "content": build_transaction_prompt(message, categories)},
        ],
        temperature=0.2,
    )


def parse_json_answer(raw_text: str) -> Any:
    cleaned = _CODE_FENCE.sub("", raw_text).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        lib_logger.error(f"Failed to parse AI response as JSON: {raw_text[:200]!r}")
        raise ProviderCallFailed("AI returned invalid JSON format") from e


def model_url_for(account: Account) -> str:
    settings = account.settings or {}
    if settings.get("model_url"):
        return settings["model_url"]
    return (
        f"https://clarifai.com/{settings.get('user_id', 'openai')}/"
        f"{settings.get('app_id', 'chat-completion')}/models/"
        f"{settings.get('model_id', 'gpt-oss-120b')}"
    )


class ClarifaiProvider(ProviderInterface):
    """LLM calls through Clarifai's OpenAI-compatible endpoint, via LiteLLM."""

    async def validate_credential(self, credential: str, client: httpx.AsyncClient) -> None:
        response = await client.get(
            f"{API_BASE}/users/me", headers={"Authorization": f"Key {credential}"}
        )
        response.raise_for_status()

    async def call(self, account: Account, payload: ChatRequest, client: httpx.AsyncClient) -> ProviderResponse:
        litellm_kwargs: Dict[str, Any] = {
            "model": f"openai/{model_url_for(account)}",
            "api_base": OPENAI_COMPAT_BASE,
            "api_key": account.credential,
            "messages": payload.messages,
            "temperature": payload.temperature,
        }
        if payload.max_tokens:
            litellm_kwargs["max_tokens"] = payload.max_tokens

        response = await litellm.acompletion(**litellm_kwargs)

        try:
            raw_text = response.choices[0].message.content
        except (AttributeError, IndexError, KeyError):
            raw_text = None
        if not raw_text:
            raise ProviderCallFailed("No response from AI")

        data = parse_json_answer(raw_text) if payload.expect_json else raw_text
        return ProviderResponse(data=data, quantity=0, cost=0.0)
