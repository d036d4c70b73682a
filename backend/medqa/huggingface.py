import logging
import re

import httpx

from medqa.providers import (
    DISCLAIMER, DISCLAIMER_PHRASE, ProviderClient, ProviderOutcome, ProviderResult,
)

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """<s>[INST] You are a medical educator helping students prepare for exams.
Answer the question below with general medical knowledge only.
- Never give personal medical advice, diagnosis, dosing or treatment recommendations.
- Explain the key mechanism or pathophysiology when relevant.
- Keep the answer under 200 words.
- Finish with: "{disclaimer}"

Question: {question} [/INST]"""

GENERATION_PARAMETERS = {
    "max_new_tokens": 400,
    "temperature": 0.3,
    "return_full_text": False,
}

MIN_ANSWER_LENGTH = 20

_INSTRUCTION_BLOCK = re.compile(r"\[INST\].*?\[/INST\]", re.DOTALL)
# Model started a new turn and never closed it
_UNCLOSED_INSTRUCTION = re.compile(r"\[INST\].*\Z", re.DOTALL)
_SPECIAL_TOKENS = re.compile(r"</?s>|\[/?INST\]")
_LEADING_LABEL = re.compile(r"^\s*(?:answer|response)\s*:\s*", re.IGNORECASE)
_BLANK_LINE_RUNS = re.compile(r"\n(?:[ \t]*\n){3,}")


def strip_instruction_artifacts(text: str | None) -> str:
    """Strip instruction-template debris from raw model output.

    Removes echoed [INST] blocks and stray special tokens, drops a leading
    "Answer:"/"Response:" label and collapses 3+ blank lines to one.
    """
    if not text:
        return ""
    text = _INSTRUCTION_BLOCK.sub("", text)
    text = _UNCLOSED_INSTRUCTION.sub("", text)
    text = _SPECIAL_TOKENS.sub("", text)
    text = _LEADING_LABEL.sub("", text.strip())
    return _BLANK_LINE_RUNS.sub("\n\n", text).strip()


def ensure_disclaimer(text: str) -> str:
    if DISCLAIMER_PHRASE in text.lower():
        return text
    return f"{text}\n\n{DISCLAIMER}"


def clean_generated_text(text: str | None) -> str:
    """Cleaned model output with the disclaimer appended. Empty stays empty."""
    text = strip_instruction_artifacts(text)
    return ensure_disclaimer(text) if text else ""


def _generated_text(data) -> str | None:
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        text = data.get("generated_text")
        return text if isinstance(text, str) else None
    return None


class HuggingFaceClient(ProviderClient):
    """Fallback provider: Hugging Face Inference API text generation."""

    name = "huggingface"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        model: str = "mistralai/Mistral-7B-Instruct-v0.2",
        timeout: float = 25.0,
        base_url: str = "https://api-inference.huggingface.co/models",
    ):
        super().__init__(http_client, api_key, model, timeout)
        self.base_url = base_url.rstrip("/")

    @property
    def source(self) -> str:
        # mistralai/Mistral-7B-Instruct-v0.2 -> hf_mistral_7b_instruct_v0.2
        return "hf_" + self.model.split("/")[-1].lower().replace("-", "_")

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.model}"

    def build_prompt(self, question: str) -> str:
        return PROMPT_TEMPLATE.format(question=question, disclaimer=DISCLAIMER)

    def build_payload(self, question: str) -> dict:
        return {
            "inputs": self.build_prompt(question),
            "parameters": GENERATION_PARAMETERS,
            "options": {"wait_for_model": False},
        }

    async def generate(self, question: str) -> ProviderResult:
        if not self.configured:
            logger.warning("HF_API_KEY not set - fallback provider unavailable")
            return ProviderResult.failure(
                ProviderOutcome.NOT_CONFIGURED, "HF_API_KEY is not set"
            )

        response = await self._post(
            self.url,
            headers={"Authorization": f"Bearer {self.api_key}"},
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
                f"Hugging Face returned a non-JSON body: {response.text[:200]}",
            )

        # Length is judged on the model's own text, before the disclaimer
        body = strip_instruction_artifacts(_generated_text(data))
        if len(body) < MIN_ANSWER_LENGTH:
            return ProviderResult.failure(
                ProviderOutcome.EMPTY_OR_TOO_SHORT,
                f"Hugging Face answer too short after cleanup: {body!r}",
            )
        return ProviderResult.success(ensure_disclaimer(body))

    def _classify_error(self, response: httpx.Response) -> ProviderResult:
        status = response.status_code
        body = response.text[:500]
        detail = f"Hugging Face HTTP {status}: {body}"

        if status == 503 and "loading" in body.lower():
            logger.info(f"Hugging Face model {self.model} is still loading")
            return ProviderResult.failure(ProviderOutcome.TRANSPORT_FAILURE, detail)
        if status == 401:
            logger.error("Hugging Face rejected HF_API_KEY (401) - check the credential")
            return ProviderResult.failure(ProviderOutcome.TRANSPORT_FAILURE, detail)
        if status == 429:
            return ProviderResult.failure(ProviderOutcome.QUOTA_EXCEEDED, detail)
        return ProviderResult.failure(ProviderOutcome.TRANSPORT_FAILURE, detail)
