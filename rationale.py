# rationale.py
"""
Free-text guidance for a matched defect, produced by an LLM.

The rationale is advisory only: the structured SOP content returned by
analyze comes from the knowledge base, never from the model. Generators
raise on any transport or API problem; the caller decides what to do.
"""

import logging
from typing import Optional

import anthropic
import requests

from config import Settings
from kb_store import SopEntry

logger = logging.getLogger(__name__)


def build_system_prompt(entry: SopEntry) -> str:
    """System prompt grounded in the matched SOP entry."""
    causes = "\n".join(f"{i}. {c}" for i, c in enumerate(entry.root_causes, 1))
    actions = "\n".join(f"{i}. {a}" for i, a in enumerate(entry.corrective_actions, 1))

    system_prompt = f"""
You are an experienced coating line process engineer helping an operator
diagnose a coating defect.

You MUST base your answer ONLY on the SOP entry below.
If the description does not fit this defect well, say so briefly.

MATCHED SOP: {entry.code} - {entry.name} (severity: {entry.severity})

DEFECT DESCRIPTION:
{entry.text}

ROOT CAUSES (check in this order):
{causes}

CORRECTIVE ACTIONS (execute in this order):
{actions}

INSTRUCTIONS:
1. In 3-5 sentences, explain which root cause is most likely given the operator's description.
2. Point to the first corrective action to try and what to measure.
3. Plain text only, no HTML or markdown headings.
4. Do NOT invent temperatures, viscosities or other values not given above.
"""
    return system_prompt.strip()


def build_user_prompt(description: str, score: Optional[float], strategy: str) -> str:
    lines = [f"Operator description: {description}"]
    if score is not None:
        lines.append(f"Match confidence ({strategy}): {score}")
    return "\n".join(lines)


class OllamaRationaleGenerator:
    """Local LLM via Ollama's /api/chat endpoint."""

    def __init__(self,
                 base_url: str = "http://localhost:11434",
                 model: str = "gemma2:9b",
                 timeout: float = 60.0,
                 temperature: float = 0.3,
                 num_predict: int = 512):
        self.url = base_url.rstrip("/") + "/api/chat"
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.num_predict = num_predict

    def generate(self, description: str, entry: SopEntry,
                 score: Optional[float] = None, strategy: str = "keyword") -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": build_system_prompt(entry)},
                {"role": "user", "content": build_user_prompt(description, score, strategy)},
            ],
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.num_predict,
            },
        }
        resp = requests.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json()

        # Typical Ollama chat response: {"message": {"role": "assistant", "content": "..."}}
        if isinstance(data, dict) and isinstance(data.get("message"), dict):
            return (data["message"].get("content") or "").strip()
        return ""


class AnthropicRationaleGenerator:
    """Hosted LLM via the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, timeout: float = 60.0,
                 max_tokens: int = 512):
        self.client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        self.model = model
        self.max_tokens = max_tokens

    def generate(self, description: str, entry: SopEntry,
                 score: Optional[float] = None, strategy: str = "keyword") -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=build_system_prompt(entry),
            messages=[
                {"role": "user", "content": build_user_prompt(description, score, strategy)}
            ],
        )
        parts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return "\n".join(parts).strip()


def build_rationale_generator(settings: Settings):
    if settings.rationale_backend == "ollama":
        return OllamaRationaleGenerator(
            base_url=settings.ollama_url,
            model=settings.ollama_model,
            timeout=settings.rationale_timeout,
        )
    if settings.rationale_backend == "anthropic":
        if not settings.anthropic_api_key:
            logger.warning("RATIONALE_BACKEND=anthropic but ANTHROPIC_API_KEY is not set; "
                           "rationale disabled")
            return None
        return AnthropicRationaleGenerator(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout=settings.rationale_timeout,
        )
    return None
