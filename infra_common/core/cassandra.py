"""
Cassandra Database Context Module

Applications subclass ``CassandraDbContext`` to hold their own query helpers and
register the subclass with ``add_cassandra``. The base class turns
``CassandraOptions`` into a cassandra-driver ``Cluster``:

- contact points and port
- DC-aware round robin load balancing when a local data center is configured
- socket connect timeout
- exponential reconnection policy when enabled
- plain-text authentication when credentials are configured

The session is opened lazily on first use. ``check_health`` runs a lightweight
query against ``system.local`` bounded by the configured health timeout.
"""

import asyncio
import logging

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from cassandra import DriverException
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, NoHostAvailable, Session
from cassandra.policies import DCAwareRoundRobinPolicy, ExponentialReconnectionPolicy

from infra_common.config import CassandraOptions, ServiceOptions, bind_options
from infra_common.registry import ServiceRegistry


logger = logging.getLogger(__name__)

HEALTH_CHECK_QUERY = "SELECT release_version FROM system.local"


@runtime_checkable
class CassandraContext(Protocol):
    """Marker interface for registered database contexts."""

    @property
    def session(self) -> Session: ...

    async def check_health(self) -> bool: ...


class CassandraDbContext:
    """
    Base database context owning a cassandra-driver cluster and session.

    Example:
        ```python
        class OrdersDbContext(CassandraDbContext):
            def get_order(self, order_id):
                return self.session.execute(
                    "SELECT * FROM orders WHERE id = %s", (order_id,)
                ).one()

        add_cassandra(registry, settings.cassandra, OrdersDbContext)
        orders = registry.get_required(OrdersDbContext)
        ```
    """

    def __init__(self, options: CassandraOptions) -> None:
        self.options = options
        self._cluster: Cluster | None = None
        self._session: Session | None = None

    def build_cluster(self) -> Cluster:
        """Create the driver ``Cluster`` from options. Override to customise."""
        options = self.options
        cluster_args: dict[str, Any] = {"port": options.port}

        if options.contact_points:
            cluster_args["contact_points"] = list(options.contact_points)

        if options.local_dc:
            cluster_args["load_balancing_policy"] = DCAwareRoundRobinPolicy(
                local_dc=options.local_dc
            )

        connect_timeout = options.socket_connect_timeout.total_seconds()
        if connect_timeout > 0:
            cluster_args["connect_timeout"] = connect_timeout

        if options.exponential_reconnect_policy:
            cluster_args["reconnection_policy"] = ExponentialReconnectionPolicy(
                base_delay=options.exponential_reconnect_policy_base_delay.total_seconds(),
                max_delay=options.exponential_reconnect_policy_max_delay.total_seconds(),
            )

        if options.username:
            cluster_args["auth_provider"] = PlainTextAuthProvider(
                username=options.username, password=options.password or ""
            )

        logger.info(
            "Creating Cassandra cluster",
            extra={
                "contact_points": options.contact_points,
                "local_dc": options.local_dc or None,
                "exponential_reconnect_policy": options.exponential_reconnect_policy,
            },
        )
        return Cluster(**cluster_args)

    @property
    def cluster(self) -> Cluster:
        if self._cluster is None:
            self._cluster = self.build_cluster()
        return self._cluster

    @property
    def session(self) -> Session:
        """Session bound to the configured keyspace, connected on first access."""
        if self._session is None:
            self._session = self.cluster.connect(self.options.keyspace)
            logger.info(
                "Connected to Cassandra",
                extra={"keyspace": self.options.keyspace},
            )
        return self._session

    async def check_health(self) -> bool:
        """
        Run a lightweight query to verify the cluster is reachable.

        The query is bounded by ``HealthTimeout`` when it is set.

        Returns:
            bool: True if the query succeeded, False on driver errors.
        """
        timeout = self.options.health_timeout.total_seconds() or None
        try:
            await asyncio.to_thread(self._execute_health_query, timeout)
            return True
        except (NoHostAvailable, DriverException):
            logger.exception("Cassandra health check failed")
            return False

    def _execute_health_query(self, timeout: float | None) -> None:
        if timeout is None:
            self.session.execute(HEALTH_CHECK_QUERY)
        else:
            self.session.execute(HEALTH_CHECK_QUERY, timeout=timeout)

    def close(self) -> None:
        """Shut down the cluster and its session. Safe to call multiple times."""
        if self._cluster is not None:
            self._cluster.shutdown()
            logger.info("Cassandra cluster shut down")
        self._cluster = None
        self._session = None


def add_cassandra(
    registry: ServiceRegistry,
    cassandra_configuration: Mapping[str, Any] | ServiceOptions | None,
    implementation: type[CassandraDbContext],
    context_type: type | None = None,
) -> ServiceRegistry:
    """
    Register a database context and its typed options.

    The implementation is created once and resolvable as ``implementation``,
    as ``CassandraContext`` and, when given, as ``context_type``. Options are
    registered as ``CassandraOptions`` named by ``context_type`` (or the
    implementation) so several contexts can coexist with their own options.

    Args:
        registry: Composition root to register into.
        cassandra_configuration: The ``Cassandra`` configuration section.
        implementation: ``CassandraDbContext`` subclass to instantiate.
        context_type: Optional interface the implementation also satisfies.

    Returns:
        ServiceRegistry: The same registry, for chaining.

    Raises:
        TypeError: If ``implementation`` does not derive from
                   ``CassandraDbContext`` or from ``context_type``.
        ConfigurationError: If the section is missing or invalid. Nothing is
                            registered in that case.
    """
    if not issubclass(implementation, CassandraDbContext):
        raise TypeError(f"{implementation.__qualname__} must derive from CassandraDbContext")
    if context_type is not None and not issubclass(implementation, context_type):
        raise TypeError(
            f"{implementation.__qualname__} must derive from {context_type.__qualname__}"
        )

    options = bind_options(cassandra_configuration, CassandraOptions, "Cassandra")
    options_name = context_type or implementation

    registry.add_singleton(CassandraOptions, options, name=options_name)
    registry.add_factory(
        implementation,
        lambda r: implementation(r.get_required(CassandraOptions, options_name)),
    )
    registry.add_factory(
        CassandraContext,
        lambda r: r.get_required(implementation),
        owned=False,
    )
    if context_type is not None:
        registry.add_factory(
            context_type,
            lambda r: r.get_required(implementation),
            owned=False,
        )

    return registry


__all__ = [
    "HEALTH_CHECK_QUERY",
    "CassandraContext",
    "CassandraDbContext",
    "add_cassandra",
]
