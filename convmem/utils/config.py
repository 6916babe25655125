"""
Configuration management for AWS services and application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass
class BedrockLLMConfig:
    """Configuration for Amazon Bedrock LLM service."""
    region: str
    model_id: str
    max_tokens: int
    temperature: float
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class NeptuneConfig:
    """Configuration for Amazon Neptune graph database (openCypher over HTTPS)."""
    endpoint: str
    port: int
    region: str
    reader_endpoint: Optional[str]
    retry_attempts: int
    retry_delay: float
    connect_timeout: int
    read_timeout: int


@dataclass
class RetrievalConfig:
    """Configuration for memory retrieval."""
    similarity_threshold: float
    default_limit: int
    default_days_back: int
    similar_threshold: float
    similar_limit: int
    neighborhood_seconds: int


@dataclass
class EmbeddingPipelineConfig:
    """Configuration for message embedding generation."""
    mode: str  # sync, async or off
    workers: int
    max_attempts: int
    retry_delay: float


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    bedrock_llm: BedrockLLMConfig
    bedrock_embed: BedrockEmbedConfig
    neptune: NeptuneConfig
    retrieval: RetrievalConfig
    embedding: EmbeddingPipelineConfig
    mcp: MCPConfig


EMBEDDING_MODES = ('sync', 'async', 'off')


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # Bedrock configuration
    bedrock_llm_config = BedrockLLMConfig(region=os.getenv('BEDROCK_LLM_AWS_REGION', 'us-east-1'),
                                          model_id=os.getenv('BEDROCK_LLM_MODEL_ID', 'anthropic.claude-3-sonnet-20240229-v1:0'),
                                          max_tokens=int(os.getenv('BEDROCK_LLM_MAX_TOKENS', '1000')),
                                          temperature=float(os.getenv('BEDROCK_LLM_TEMPERATURE', '0.7')),
                                          retry_attempts=int(os.getenv('BEDROCK_LLM_RETRY_ATTEMPTS', '3')),
                                          retry_delay=float(os.getenv('BEDROCK_LLM_RETRY_DELAY', '1.0')),
                                          connect_timeout=int(os.getenv('BEDROCK_LLM_CONNECT_TIMEOUT', '10')),
                                          read_timeout=int(os.getenv('BEDROCK_LLM_READ_TIMEOUT', '120')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '3')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '1.0')),
                                              connect_timeout=int(os.getenv('BEDROCK_EMBED_CONNECT_TIMEOUT', '10')),
                                              read_timeout=int(os.getenv('BEDROCK_EMBED_READ_TIMEOUT', '30')))

    # Neptune configuration
    neptune_config = NeptuneConfig(endpoint=os.getenv('NEPTUNE_ENDPOINT', 'localhost'),
                                   port=int(os.getenv('NEPTUNE_PORT', '8182')),
                                   region=os.getenv('NEPTUNE_AWS_REGION', 'us-east-1'),
                                   reader_endpoint=os.getenv('NEPTUNE_READER_ENDPOINT') or None,
                                   retry_attempts=int(os.getenv('NEPTUNE_RETRY_ATTEMPTS', '3')),
                                   retry_delay=float(os.getenv('NEPTUNE_RETRY_DELAY', '0.2')),
                                   connect_timeout=int(os.getenv('NEPTUNE_CONNECT_TIMEOUT', '10')),
                                   read_timeout=int(os.getenv('NEPTUNE_READ_TIMEOUT', '30')))

    # Retrieval configuration
    retrieval_config = RetrievalConfig(similarity_threshold=float(os.getenv('RETRIEVAL_SIMILARITY_THRESHOLD', '0.7')),
                                       default_limit=int(os.getenv('RETRIEVAL_DEFAULT_LIMIT', '10')),
                                       default_days_back=int(os.getenv('RETRIEVAL_DEFAULT_DAYS_BACK', '30')),
                                       similar_threshold=float(os.getenv('RETRIEVAL_SIMILAR_THRESHOLD', '0.75')),
                                       similar_limit=int(os.getenv('RETRIEVAL_SIMILAR_LIMIT', '5')),
                                       neighborhood_seconds=int(os.getenv('RETRIEVAL_NEIGHBORHOOD_SECONDS', '300')))

    # Embedding pipeline configuration
    embedding_mode = os.getenv('EMBEDDING_MODE', 'sync').strip().lower()
    if embedding_mode not in EMBEDDING_MODES:
        raise ValueError(f'EMBEDDING_MODE must be one of {EMBEDDING_MODES}, got {embedding_mode!r}')
    embedding_config = EmbeddingPipelineConfig(mode=embedding_mode,
                                               workers=int(os.getenv('EMBEDDING_WORKERS', '1')),
                                               max_attempts=int(os.getenv('EMBEDDING_MAX_ATTEMPTS', '3')),
                                               retry_delay=float(os.getenv('EMBEDDING_RETRY_DELAY', '1.0')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     bedrock_llm=bedrock_llm_config,
                     bedrock_embed=bedrock_embed_config,
                     neptune=neptune_config,
                     retrieval=retrieval_config,
                     embedding=embedding_config,
                     mcp=mcp_config)
