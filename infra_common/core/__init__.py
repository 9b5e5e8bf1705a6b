"""
Service contexts and registration helpers for shared infrastructure.

This package contains one module per external service:
- cassandra: Cassandra database context built on cassandra-driver
- storage: MinIO / S3-compatible object store context built on boto3
- redis_client: Redis connection context built on redis.asyncio
- events: in-process events registered under source and subscription interfaces

Each module ends with an ``add_*`` function that validates its configuration
section and registers singletons into a ``ServiceRegistry``.
"""
