"""
Service wiring for the API.

Every component is built once per application from the same session factory
and stored on ``app.state.services``; routes pull it through ``get_services``.
"""
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cashless.config import Settings
from cashless.core.card_reader import CardScanFeed
from cashless.core.credentials import CredentialVerifier
from cashless.core.identity import IdentityResolver
from cashless.core.ledger import OrderLedger
from cashless.core.settlement import SettlementEngine
from cashless.monitoring.health import HealthCheck


@dataclass
class Services:
    ledger: OrderLedger
    identity_resolver: IdentityResolver
    credential_verifier: CredentialVerifier
    settlement_engine: SettlementEngine
    card_feed: CardScanFeed
    health_check: HealthCheck
    settings: Settings

    @classmethod
    def build(
        cls, session_factory: async_sessionmaker[AsyncSession], settings: Settings
    ) -> "Services":
        identity_resolver = IdentityResolver(session_factory)
        credential_verifier = CredentialVerifier()
        ledger = OrderLedger(
            session_factory,
            identity_resolver,
            default_page_size=settings.default_page_size,
        )
        return cls(
            ledger=ledger,
            identity_resolver=identity_resolver,
            credential_verifier=credential_verifier,
            settlement_engine=SettlementEngine(
                session_factory,
                identity_resolver=identity_resolver,
                credential_verifier=credential_verifier,
                ledger=ledger,
            ),
            card_feed=CardScanFeed(),
            health_check=HealthCheck(session_factory),
            settings=settings,
        )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the application's services."""
    return request.app.state.services
