"""
Dependency injection container using dependency-injector.
Wires settings, collaborator clients, the lock registry and services.

Services are factories bound to a session at call time:

    async with container.session_factory()() as session:
        service = container.quote_service(session=session)
"""

from dependency_injector import containers, providers

from quotedesk.core.config import settings
from quotedesk.core.integrations.http.http_client import HttpClient
from quotedesk.core.integrations.inventory import HttpInventoryClient
from quotedesk.core.integrations.orders import HttpOrderClient
from quotedesk.core.integrations.catalog import HttpCatalogClient
from quotedesk.db.session import get_sessionmaker
from quotedesk.services.health_service import HealthService
from quotedesk.services.calculation_service import CalculationService
from quotedesk.services.quote_service import QuoteService
from quotedesk.services.workflow_service import WorkflowService
from quotedesk.services.revision_service import RevisionService
from quotedesk.services.expiry_service import ExpiryService
from quotedesk.services.conversion_service import ConversionService
from quotedesk.utils.locking import quote_locks


class Container(containers.DeclarativeContainer):
    """Dependency injection container."""

    # Configuration
    config = providers.Configuration()

    # Sessionmaker; each unit of work opens its own session from it
    session_factory = providers.Callable(get_sessionmaker)

    # Process-wide per-quote locks
    locks = providers.Object(quote_locks)

    # HTTP clients, one per collaborator
    inventory_http_client = providers.Singleton(
        HttpClient,
        base_url=config.inventory_service_url,
        timeout=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
        retry_delay=config.http_retry_delay_seconds,
    )

    order_http_client = providers.Singleton(
        HttpClient,
        base_url=config.order_service_url,
        timeout=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
        retry_delay=config.http_retry_delay_seconds,
    )

    catalog_http_client = providers.Singleton(
        HttpClient,
        base_url=config.catalog_service_url,
        timeout=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
        retry_delay=config.http_retry_delay_seconds,
    )

    # Collaborators
    inventory = providers.Singleton(HttpInventoryClient, http_client=inventory_http_client)
    orders = providers.Singleton(HttpOrderClient, http_client=order_http_client)
    catalog = providers.Singleton(HttpCatalogClient, http_client=catalog_http_client)

    # Services
    health_service = providers.Singleton(
        HealthService,
        session_factory=session_factory,
    )

    calculation_service = providers.Factory(CalculationService)

    quote_service = providers.Factory(
        QuoteService,
        catalog=catalog,
        locks=locks,
    )

    workflow_service = providers.Factory(
        WorkflowService,
        locks=locks,
        system_actor=config.system_actor,
    )

    revision_service = providers.Factory(
        RevisionService,
        locks=locks,
    )

    expiry_service = providers.Factory(
        ExpiryService,
        locks=locks,
    )

    conversion_service = providers.Factory(
        ConversionService,
        inventory=inventory,
        orders=orders,
        locks=locks,
        order_timeout=config.order_creation_timeout_seconds,
    )


def build_container() -> Container:
    """Create a container configured from settings."""
    container = Container()
    container.config.from_dict({
        "inventory_service_url": settings.INVENTORY_SERVICE_URL,
        "order_service_url": settings.ORDER_SERVICE_URL,
        "catalog_service_url": settings.CATALOG_SERVICE_URL,
        "http_timeout_seconds": settings.HTTP_TIMEOUT_SECONDS,
        "http_max_retries": settings.HTTP_MAX_RETRIES,
        "http_retry_delay_seconds": settings.HTTP_RETRY_DELAY_SECONDS,
        "order_creation_timeout_seconds": settings.ORDER_CREATION_TIMEOUT_SECONDS,
        "system_actor": settings.SYSTEM_ACTOR,
    })
    return container


async def close_http_clients(container: Container) -> None:
    """Close the aiohttp sessions of every collaborator client."""
    for provider in (
        container.inventory_http_client,
        container.order_http_client,
        container.catalog_http_client,
    ):
        await provider().close()


# Global container instance
_container: Container = None


def get_container() -> Container:
    """Get the global dependency injection container."""
    global _container
    if _container is None:
        _container = build_container()
    return _container
