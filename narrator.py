"""Plain-language description of the cluster, written by a hosted language model.

The narrator only ever sees a ClusterSummary. Whatever goes wrong on its side (no API key, network error,
unexpected answer) ends up as a fixed fallback message: the simulation never depends on it.
"""
import json
import logging
import os

import httpx

from snapshot import ClusterSummary

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.5-flash"
FALLBACK_MESSAGE = "Error connecting to AI analysis service. Please check your API Key."
EMPTY_ANSWER_MESSAGE = "Unable to analyze state."


class NarratorUnavailable(Exception):
    pass


def build_prompt(summary: ClusterSummary, paused: bool) -> str:
    return f"""
You are an expert distributed systems engineer. Analyze this specific Raft Consensus state:
{json.dumps(summary.as_dict(), indent=2)}

The simulation is currently {"PAUSED" if paused else "RUNNING"}.

Explain what is happening in the cluster briefly (max 3 sentences).
- Is the cluster healthy?
- Is an election happening?
- Are logs inconsistent?

Do not use markdown formatting like bolding or headers. Just plain text.
"""


class Narrator:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key if api_key is not None else os.environ.get("GEMINI_API_KEY", os.environ.get("API_KEY"))
        self.model = model
        self.client = client if client is not None else httpx.Client(timeout=timeout)

    def explain(self, summary: ClusterSummary, paused: bool) -> str:
        try:
            text = self._generate(build_prompt(summary, paused))
        except (
            NarratorUnavailable,
            httpx.HTTPError,
            ValueError,
            KeyError,
            IndexError,
            TypeError,
            AttributeError,
        ) as e:
            logger.error("cluster analysis failed: %s", e)
            return FALLBACK_MESSAGE
        return text.strip() or EMPTY_ANSWER_MESSAGE

    def _generate(self, prompt: str) -> str:
        if not self.api_key:
            raise NarratorUnavailable("no API key configured")

        response = self.client.post(
            GEMINI_API_URL.format(model=self.model),
            headers={"x-goog-api-key": self.api_key},
            json={"contents": [{"parts": [{"text": prompt}]}]},
        )
        response.raise_for_status()
        body = response.json()
        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        parts = candidates[0]["content"].get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def close(self):
        self.client.close()
