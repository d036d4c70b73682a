import logging

import httpx

from medqa.providers import (
    DISCLAIMER, ProviderClient, ProviderOutcome, ProviderResult,
)

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are an expert medical educator helping students prepare for exams. Provide a concise, accurate educational explanation:

"{question}"

RULES:
1. ONLY provide general medical knowledge for exam preparation
2. NEVER give personal medical advice, diagnosis, or treatment recommendations
3. Include key pathophysiology/mechanisms when relevant
4. Keep response under 200 words
5. End with: "{disclaimer}"

Response:"""

GENERATION_CONFIG = {
    "temperature": 0.3,
    "maxOutputTokens": 800,
    "topP": 0.95,
}

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]

MIN_ANSWER_LENGTH = 15


def _error_message(response: httpx.Response) -> str:
    """Pull error.message out of a Gemini error body, falling back to raw text."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return str(data["error"].get("message", ""))
    return response.text


def _extract_text(candidate: dict) -> str | None:
    parts = (candidate.get("content") or {}).get("parts") or []
    if not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    return text.strip() if isinstance(text, str) else None


class GeminiClient(ProviderClient):
    """Primary provider: Gemini generateContent over REST."""

    name = "gemini"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 10.0,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ):
        super().__init__(http_client, api_key, model, timeout)
        self.base_url = base_url.rstrip("/")

    @property
    def source(self) -> str:
        # gemini-2.5-flash -> gemini_2.5_flash
        return self.model.replace("-", "_")

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_prompt(self, question: str) -> str:
        return PROMPT_TEMPLATE.format(question=question, disclaimer=DISCLAIMER)

    def build_payload(self, question: str) -> dict:
        return {
            "contents": [{"parts": [{"text": self.build_prompt(question)}]}],
            "generationConfig": GENERATION_CONFIG,
            "safetySettings": SAFETY_SETTINGS,
        }

    async def generate(self, question: str) -> ProviderResult:
        if not self.configured:
            return ProviderResult.failure(
                ProviderOutcome.NOT_CONFIGURED, "GEMINI_KEY is not set"
            )

        response = await self._post(
            self.url,
            params={"key": self.api_key},
            json=self.build_payload(question),
        )
        if isinstance(response, ProviderResult):
            return response

        if response.is_error:
            return self._classify_error(response)

        try:
            data = response.json()
        except ValueError:
            return ProviderResult.failure(
                ProviderOutcome.TRANSPORT_FAILURE,
                f"Gemini returned a non-JSON body: {response.text[:200]}",
            )
        return self.parse_response(data)

    def _classify_error(self, response: httpx.Response) -> ProviderResult:
        message = _error_message(response)
        detail = f"Gemini HTTP {response.status_code}: {message}"
        if response.status_code == 429 or "quota" in message.lower():
            return ProviderResult.failure(ProviderOutcome.QUOTA_EXCEEDED, detail)
        return ProviderResult.failure(ProviderOutcome.TRANSPORT_FAILURE, detail)

    def parse_response(self, data: dict) -> ProviderResult:
        """Classify a successful generateContent body."""
        if not isinstance(data, dict):
            return ProviderResult.failure(
                ProviderOutcome.EMPTY_OR_TOO_SHORT, "Gemini body is not an object"
            )

        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            return ProviderResult.failure(
                ProviderOutcome.SAFETY_BLOCKED, f"Prompt blocked: {block_reason}"
            )

        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates else None
        if not isinstance(candidate, dict):
            return ProviderResult.failure(
                ProviderOutcome.SAFETY_BLOCKED, "Gemini returned no candidates"
            )
        if candidate.get("finishReason") == "SAFETY":
            return ProviderResult.failure(
                ProviderOutcome.SAFETY_BLOCKED, "Candidate finished with SAFETY"
            )

        text = _extract_text(candidate)
        if not text or len(text) < MIN_ANSWER_LENGTH:
            return ProviderResult.failure(
                ProviderOutcome.EMPTY_OR_TOO_SHORT,
                f"Gemini answer too short: {text!r}",
            )
        return ProviderResult.success(text)
