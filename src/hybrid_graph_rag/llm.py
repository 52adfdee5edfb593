from __future__ import annotations
import logging
import random
import time
from functools import wraps
from typing import List, Protocol, Tuple, Type

from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import ChatOllama, OllamaEmbeddings

from .config import settings
from .errors import TransientDependencyError

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str:
        ...


class EmbeddingProvider(Protocol):
    def embed_query(self, text: str) -> List[float]:
        ...

    def embed_texts(self, texts: List[str]) -> List[List[float]]:
        ...


def with_retry(
    max_retries: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
):
    """Exponential backoff with jitter; the last error is re-raised."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            retries = settings.dependency_max_retries if max_retries is None else max_retries
            base = settings.dependency_retry_base_seconds if base_delay is None else base_delay
            cap = settings.dependency_retry_max_seconds if max_delay is None else max_delay
            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= retries:
                        raise
                    delay = min(base * (2 ** attempt), cap)
                    delay *= 0.5 + random.random() * 0.5
                    logger.warning(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__name__, attempt + 1, retries + 1, e, delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator


class LLMClient:
    """Ollama-backed text generator and embedding provider."""

    def __init__(
        self,
        chat_model: str | None = None,
        embedding_model: str | None = None,
        temperature: float | None = None,
    ):
        chat_model = chat_model or settings.ollama_chat_model
        embedding_model = embedding_model or settings.ollama_embedding_model
        if temperature is None:
            temperature = settings.ollama_temperature

        self.chat = ChatOllama(
            model=chat_model,
            temperature=temperature,
            base_url=settings.ollama_base_url,
            client_kwargs={"timeout": settings.generation_timeout_seconds},
        )
        self.embeddings = OllamaEmbeddings(
            model=embedding_model,
            base_url=settings.ollama_base_url,
        )
        self.prompt = ChatPromptTemplate.from_messages([("user", "{input}")])

    def generate(self, prompt: str):
        try:
            return self._invoke(prompt)
        except Exception as e:
            raise TransientDependencyError(f"text generation failed: {e}") from e

    @with_retry()
    def _invoke(self, prompt: str):
        chain = self.prompt | self.chat
        resp = chain.invoke({"input": prompt})
        return resp.content

    @with_retry()
    def embed_texts(self, texts: List[str]):
        return self.embeddings.embed_documents(texts)

    @with_retry()
    def embed_query(self, text: str):
        return self.embeddings.embed_query(text)
