"""
Health probes for the Bedrock and Neptune dependencies of the memory engine.
"""

from typing import Any, Callable, Dict, List, Tuple

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import AppConfig
from .logging_config import get_logger
from .neptune_client import NeptuneClient

logger = get_logger(__name__)

SERVICE_NAME = 'convmem'
SERVICE_VERSION = '1.0.0'


def _probes(config: AppConfig) -> List[Tuple[str, str, Dict[str, str], Callable[[], Any]]]:
    return [
        ('bedrock_llm', 'Amazon Bedrock LLM', {'model': config.bedrock_llm.model_id},
         lambda: BedrockLLM(config.bedrock_llm)),
        ('bedrock_embed', 'Amazon Bedrock Embed', {'model': config.bedrock_embed.model_id},
         lambda: BedrockEmbed(config.bedrock_embed)),
        ('neptune', 'Amazon Neptune', {'endpoint': config.neptune.endpoint},
         lambda: NeptuneClient(config.neptune)),
    ]


def get_health_status(config: AppConfig) -> Dict[str, Any]:
    """Probe each dependency with a fresh client.

    Returns:
        Mapping of component name to {'healthy', 'service', ...details or 'error'}
    """
    status = {}
    for name, service, details, connect in _probes(config):
        try:
            client = connect()
            try:
                status[name] = {'healthy': client.health_check(), 'service': service, **details}
            finally:
                if hasattr(client, 'close'):
                    client.close()
        except Exception as e:  # a probe must report, not raise
            logger.error(f'{service} health probe failed: {e}')
            status[name] = {'healthy': False, 'service': service, 'error': str(e)}
    return status


def check_health(config: AppConfig) -> bool:
    status = get_health_status(config)
    unhealthy = [name for name, component in status.items() if not component.get('healthy', False)]
    if unhealthy:
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')
        return False
    logger.info('All system components are healthy')
    return True


def get_system_info(config: AppConfig) -> Dict[str, Any]:
    """Describe the running configuration together with current component health."""
    return {
        'service_name': SERVICE_NAME,
        'version': SERVICE_VERSION,
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'embedding_mode': config.embedding.mode,
            'similarity_threshold': config.retrieval.similarity_threshold,
            'neptune_reader_endpoint': config.neptune.reader_endpoint or config.neptune.endpoint,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(config)
    }
