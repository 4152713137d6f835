"""
Application Wiring for finledger

This module builds the component graph the host application uses:
auth collaborator → session manager → ledger, over a document store,
plus the two AI collaborators.

DESIGN DECISION: Invalid store configuration does not crash startup.
It is captured and handed to the SessionManager, which then refuses
every ledger operation with ConfigurationInvalidError so the host can
show a distinct "fix your settings" message. Missing Gemini settings
only leave the AI agents unconfigured; they fall back to their
documented empty results.
"""

from typing import NamedTuple, Optional

import structlog

from finledger.agents import AdviceAgent, StockPriceAgent
from finledger.audit import AuditLogger
from finledger.config import (
    ConfigurationInvalidError,
    LedgerSettings,
    Settings,
    get_settings,
    load_section,
)
from finledger.ledger import SessionManager
from finledger.services.auth import AuthProvider, LocalAuthProvider
from finledger.services.storage import (
    AuditStorageInterface,
    DocumentStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)


logger = structlog.get_logger(__name__)


class AppComponents(NamedTuple):
    """Everything the host application needs."""
    auth: AuthProvider
    sessions: SessionManager
    store: Optional[DocumentStore]
    price_agent: StockPriceAgent
    advice_agent: AdviceAgent
    audit_logger: AuditLogger


def create_store(
    settings: Settings,
    backend: str,
) -> tuple[DocumentStore, AuditStorageInterface]:
    """
    Build the document store and audit storage for a backend.

    Raises:
        ConfigurationInvalidError: If the backend's settings are missing or malformed
    """
    if backend == "memory":
        return InMemoryDocumentStore(), InMemoryAuditStorage()
    if backend != "google_sheets":
        raise ConfigurationInvalidError("store", f"unknown store backend: {backend}")

    sheets_settings = load_section(settings, "google_sheets")
    client = GoogleSheetsClient(sheets_settings)
    return GoogleSheetsDocumentStore(client), GoogleSheetsAuditStorage(client)


def create_agents(settings: Settings, language: str) -> tuple[StockPriceAgent, AdviceAgent]:
    """Build the AI agents; unconfigured agents when Gemini settings are absent."""
    try:
        gemini = load_section(settings, "gemini")
    except ConfigurationInvalidError as e:
        logger.warning("gemini_not_configured", error=str(e))
        return StockPriceAgent(), AdviceAgent(language=language)
    return StockPriceAgent(gemini), AdviceAgent(gemini, language=language)


def create_app_components(
    settings: Optional[Settings] = None,
    store_backend: Optional[str] = None,
    auth: Optional[AuthProvider] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Root settings; defaults to the cached environment settings
        store_backend: "memory" or "google_sheets"; defaults to APP settings
        auth: Auth collaborator; defaults to an in-process LocalAuthProvider

    Returns:
        AppComponents with a started SessionManager
    """
    settings = settings or get_settings()
    configuration_error: Optional[ConfigurationInvalidError] = None
    store: Optional[DocumentStore] = None
    audit_storage: Optional[AuditStorageInterface] = None

    try:
        ledger_settings = load_section(settings, "ledger")
    except ConfigurationInvalidError as e:
        configuration_error = e
        ledger_settings = LedgerSettings.model_construct()

    if configuration_error is None:
        try:
            backend = store_backend or load_section(settings, "app").store_backend
            store, audit_storage = create_store(settings, backend)
        except ConfigurationInvalidError as e:
            configuration_error = e

    if configuration_error is not None:
        logger.error("configuration_invalid", error=str(configuration_error))

    audit_logger = AuditLogger(audit_storage)
    price_agent, advice_agent = create_agents(settings, ledger_settings.advice_language)

    auth = auth or LocalAuthProvider()
    sessions = SessionManager(
        auth,
        store,
        audit_logger=audit_logger,
        settings=ledger_settings,
        configuration_error=configuration_error,
    )
    sessions.start()

    return AppComponents(
        auth=auth,
        sessions=sessions,
        store=store,
        price_agent=price_agent,
        advice_agent=advice_agent,
        audit_logger=audit_logger,
    )
