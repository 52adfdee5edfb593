from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="GRAPHRAG_", extra="ignore"
    )

    # Ollama configuration
    ollama_base_url: str = "http://localhost:11434"
    ollama_chat_model: str = "llama3"
    ollama_embedding_model: str = "nomic-embed-text"
    ollama_temperature: float = 0.1

    # Graph backend: "networkx" (JSON file) or "neo4j"
    graph_backend: str = "networkx"
    graph_store_path: Path = Path("graph_store.json")
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_username: str = "neo4j"
    neo4j_password: str = "password"
    neo4j_database: str = "neo4j"

    # Worker pools (workers, queue capacity)
    query_pool_workers: int = 5
    query_pool_queue: int = 100
    document_pool_workers: int = 3
    document_pool_queue: int = 50
    embedding_pool_workers: int = 2
    embedding_pool_queue: int = 30

    # Dependency timeout / retry policy
    embedding_timeout_seconds: float = 30.0
    generation_timeout_seconds: float = 120.0
    dependency_max_retries: int = 3
    dependency_retry_base_seconds: float = 1.0
    dependency_retry_max_seconds: float = 30.0

    # Pipeline defaults
    vector_top_k: int = 10
    graph_max_hops: int = 3
    graph_max_results: int = 10
    ranking_min_relevance: float = 0.5
    ranking_diversity_threshold: float = 0.3
    ranking_max_results: int = 5
    pipeline_timeout_seconds: float = 300.0

    # Async task registry
    task_runner_workers: int = 8
    task_runner_queue: int = 100
    task_ttl_seconds: float = 3600.0

    log_level: str = "INFO"


settings = Settings()
