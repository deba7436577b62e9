"""Model registry: ordered fallback chains per extraction scope."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TOKEN_LIMIT = 4096


@dataclass(frozen=True)
class ModelCandidate:
    """One entry of a fallback chain.

    ``max_retries`` is the total number of attempts this model gets.
    """

    name: str
    id: str
    system_prompt: str
    max_retries: int
    token_limit: int = DEFAULT_TOKEN_LIMIT

    def clamp_max_tokens(self, requested: int) -> int:
        return max(1, min(requested, self.token_limit))


RECEIPT_SYSTEM_PROMPT = """You are an expert receipt parser for restaurant inventory management. \
Carefully analyze the receipt and extract ALL purchasable items.

- Extract EVERY line item that represents a product purchase.
- Expand common abbreviations (CHKN=Chicken, BROC=Broccoli, etc.).
- If quantity isn't explicit, assume 1. If the unit isn't clear, use "each".
- Ignore tax lines, subtotals, payment methods, store info and promotions.

Return ONLY valid JSON."""

BANK_STATEMENT_SYSTEM_PROMPT = (
    "You are an expert bank statement parser. Extract transaction data precisely and return valid JSON only."
)

CATEGORIZATION_SYSTEM_PROMPT = """You are an expert accountant helping categorize bank transactions. \
Analyze each transaction and assign it to the most appropriate account from the Chart of Accounts provided.

CRITICAL RULES:
- You MUST ONLY use account codes that are explicitly listed in the Chart of Accounts provided
- DO NOT invent, guess, or use account codes that are not in the provided list
- If uncertain, choose the closest matching account from the provided list
- Positive amounts are typically income/revenue; negative amounts are typically expenses
- Use confidence: "high" for obvious matches, "medium" for likely matches, "low" for uncertain
- Always provide brief reasoning for each categorization
- Learn from the example categorizations provided to understand this restaurant's patterns

Invalid account codes will be rejected."""


RECEIPT_MODELS: tuple[ModelCandidate, ...] = (
    ModelCandidate(
        name="DeepSeek V3.1 Free",
        id="deepseek/deepseek-chat-v3.1:free",
        system_prompt=RECEIPT_SYSTEM_PROMPT,
        max_retries=3,
    ),
    ModelCandidate(
        name="Mistral Small 3.2 Free",
        id="mistralai/mistral-small-3.2-24b-instruct:free",
        system_prompt=RECEIPT_SYSTEM_PROMPT,
        max_retries=1,
    ),
)

BANK_STATEMENT_MODELS: tuple[ModelCandidate, ...] = (
    ModelCandidate(
        name="Gemini 2.5 Flash",
        id="google/gemini-2.5-flash",
        system_prompt=BANK_STATEMENT_SYSTEM_PROMPT,
        max_retries=2,
        token_limit=8192,
    ),
    ModelCandidate(
        name="Llama 4 Maverick Free",
        id="meta-llama/llama-4-maverick:free",
        system_prompt=BANK_STATEMENT_SYSTEM_PROMPT,
        max_retries=2,
        token_limit=4096,
    ),
    ModelCandidate(
        name="Gemma 3 27B Free",
        id="google/gemma-3-27b-it:free",
        system_prompt=BANK_STATEMENT_SYSTEM_PROMPT,
        max_retries=2,
        token_limit=4096,
    ),
)

CATEGORIZATION_MODELS: tuple[ModelCandidate, ...] = (
    ModelCandidate(
        name="Gemini 2.5 Flash Lite",
        id="google/gemini-2.5-flash-lite",
        system_prompt=CATEGORIZATION_SYSTEM_PROMPT,
        max_retries=2,
        token_limit=8192,
    ),
    ModelCandidate(
        name="Llama 4 Maverick",
        id="meta-llama/llama-4-maverick",
        system_prompt=CATEGORIZATION_SYSTEM_PROMPT,
        max_retries=2,
    ),
    ModelCandidate(
        name="Gemma 3 27B",
        id="google/gemma-3-27b-it",
        system_prompt=CATEGORIZATION_SYSTEM_PROMPT,
        max_retries=2,
    ),
    ModelCandidate(
        name="Claude Sonnet 4.5",
        id="anthropic/claude-sonnet-4-5",
        system_prompt=CATEGORIZATION_SYSTEM_PROMPT,
        max_retries=1,
        token_limit=8192,
    ),
)

_REGISTRY: dict[str, tuple[ModelCandidate, ...]] = {
    "receipt": RECEIPT_MODELS,
    "bank_statement": BANK_STATEMENT_MODELS,
    "categorize": CATEGORIZATION_MODELS,
}


def list_models(scope: str) -> list[ModelCandidate]:
    """Return the fallback chain for *scope*, preferred model first."""
    try:
        return list(_REGISTRY[scope])
    except KeyError:
        raise ValueError(f"Unknown extraction scope: {scope!r}") from None
