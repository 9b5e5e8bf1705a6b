"""
infra-common: registration helpers and thin client wrappers for shared infrastructure.

This package wires three external services into an application through a single
composition root (``ServiceRegistry``):

- core.cassandra: Cassandra database context built on cassandra-driver
- core.storage: MinIO / S3-compatible object store context built on boto3
- core.redis_client: Redis connection context built on redis.asyncio
- core.events: in-process event source/subscription registration
- utils.net: free TCP port helper for test harnesses
- utils.logger: structured logging configuration

Package Structure:
- config.py: Options models and environment-backed Settings
- registry.py: Service registry (composition root)
- api.py: FastAPI lifespan and health router
"""

__version__ = "1.0.0"
__app_name__ = "infra-common"
