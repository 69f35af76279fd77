import os
import re
import json
from dataclasses import dataclass, field
from typing import List, Dict, Optional

import httpx

from sitebot.config import LLM
from sitebot.core.retriever import KnowledgeHit, KnowledgeSearch

NO_ANSWER = LLM["no_answer"]

_THINKING_BLOCK = re.compile(r"<(think|thinking)>.*?</\1>", re.S)


def _knowledge_only_prompt(site_name: str) -> str:
    return (
        f"You are a helpful customer support assistant for {site_name}. Answer questions ONLY "
        f"using the provided knowledge base context. If context does not have the answer, "
        f'return exactly: "{NO_ANSWER}"\n'
        "Do not write anything else.\n\n"
        f'When users ask about "this product", "it", "your service", or similar references - '
        f"they are asking about {site_name}.\n\n"
        "Rules:\n"
        "1. If the context contains the answer, provide a clear, concise response\n"
        "2. Never make up information or use general knowledge\n"
        "3. Keep responses under 300 words\n"
        "4. Be friendly and professional\n"
        f"5. Speak as a customer support representative of {site_name}.\n"
    )


def _general_knowledge_prompt(site_name: str) -> str:
    return (
        f"You are a helpful customer support assistant for {site_name}. Answer questions using "
        "the provided knowledge base context. If the context doesn't contain the answer but you "
        "have relevant general knowledge, you may use it BUT you MUST prefix your response with:\n\n"
        f'"Based on general knowledge (not specific to {site_name}): "\n\n'
        f'When users ask about "this product", "it", "your service", or similar references - '
        f"they are asking about {site_name}.\n\n"
        "Rules:\n"
        "1. Always prioritize knowledge base context\n"
        "2. Keep responses under 300 words\n"
        "3. Be friendly and professional\n"
        "4. If you use general knowledge, make it very clear\n"
    )


@dataclass
class GeneratedAnswer:
    answer: str
    sources: List[Dict[str, Optional[str]]] = field(default_factory=list)
    tokens_used: Dict[str, int] = field(default_factory=lambda: {"input": 0, "output": 0})


def unique_sources(chunks: List[KnowledgeHit]) -> List[Dict[str, Optional[str]]]:
    seen = set()
    sources = []
    for chunk in chunks:
        if chunk.page_url in seen:
            continue
        seen.add(chunk.page_url)
        sources.append({"pageUrl": chunk.page_url, "title": chunk.heading})
    return sources


def strip_thinking(text: str) -> str:
    """Remove <think>/<thinking> blocks some models emit before the answer."""
    return _THINKING_BLOCK.sub("", text).strip()


class AnswerGenerator:
    """Calls the chat-completion worker with retrieved context."""

    def __init__(self, worker_url: Optional[str] = None, http: Optional[httpx.Client] = None):
        self.worker_url = (worker_url or os.getenv("CLOUDFLARE_WORKER_URL", "")).rstrip("/")
        if not self.worker_url:
            raise RuntimeError("CLOUDFLARE_WORKER_URL environment variable is not set")
        self._http = http or httpx.Client(timeout=60.0)
        self.max_tokens = LLM["max_tokens"]
        self.temperature = LLM["temperature"]
        self.history_messages = LLM["history_messages"]

    def generate(
        self,
        question: str,
        chunks: List[KnowledgeHit],
        allow_general_knowledge: bool,
        site_name: Optional[str] = None,
        history: Optional[List[Dict[str, str]]] = None,
    ) -> GeneratedAnswer:
        site_context = site_name or "this product"
        system_prompt = (
            _general_knowledge_prompt(site_context)
            if allow_general_knowledge
            else _knowledge_only_prompt(site_context)
        )
        context = KnowledgeSearch.build_context(chunks)

        messages = [{"role": "system", "content": system_prompt}]
        for msg in (history or [])[-self.history_messages:]:
            messages.append({"role": msg["role"], "content": msg["content"]})
        messages.append({"role": "user", "content": f"Context:\n{context}\n\nQuestion: {question}"})

        payload = {
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": False,
        }

        response = self._http.post(
            f"{self.worker_url}/chat",
            json=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

        answer, tokens_used = self._parse(response.text)
        print(f"[LLM] Generated {len(answer)} chars for {site_context}", flush=True)
        return GeneratedAnswer(
            answer=answer,
            sources=unique_sources(chunks),
            tokens_used=tokens_used,
        )

    @staticmethod
    def _parse(body: str):
        # Worker returns plain text, or {"response": ..., "usage": {...}}
        tokens_used = {"input": 0, "output": 0}
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return strip_thinking(body), tokens_used

        if isinstance(data, str):
            return strip_thinking(data), tokens_used
        if not isinstance(data, dict) or "response" not in data:
            return strip_thinking(body), tokens_used

        usage = data.get("usage") or {}
        tokens_used = {
            "input": int(usage.get("prompt_tokens", 0) or 0),
            "output": int(usage.get("completion_tokens", 0) or 0),
        }
        return strip_thinking(str(data["response"])), tokens_used
