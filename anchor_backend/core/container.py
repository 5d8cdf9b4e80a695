"""
Conteneur d'injection de dépendances.

Instancie les composants centraux (settings, Vault, store de contenu, ledger, registre des
opérations, orchestrateur) à partir de la configuration. L'application en crée une instance au
démarrage (`create_app`) et la publie sur `app.state.container`; les tests injectent la leur.
"""

import os

import structlog

from anchor_backend.core.settings import Settings, get_settings
from anchor_backend.domain.inflight import InFlightRegistry
from anchor_backend.domain.orchestrator import AnchorOrchestrator, OrchestratorConfig
from anchor_backend.domain.receipt_parser import CreationEventSchema
from anchor_backend.domain.retry import RetryPolicy
from anchor_backend.infra.content.base import ContentStoreClient
from anchor_backend.infra.content.memory import InMemoryContentStore
from anchor_backend.infra.content.pinata import PinataContentStore
from anchor_backend.infra.ledger.base import LedgerClient
from anchor_backend.infra.ledger.memory import InMemoryLedger
from anchor_backend.infra.ledger.web3_client import Web3Ledger, load_abi
from anchor_backend.infra.ops.outcome_store import OutcomeStore
from anchor_backend.infra.secrets.vault_client import VaultClient

log = structlog.get_logger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        content_store: ContentStoreClient | None = None,
        ledger: LedgerClient | None = None,
    ):
        self.settings = settings or get_settings()
        # Secrets/Vault
        self.vault = VaultClient(enabled=self.settings.VAULT_ENABLED)
        self.content_store = content_store or self._build_content_store()
        self.ledger = ledger or self._build_ledger()
        self.outcome_store = OutcomeStore(
            ttl_seconds=int(self.settings.INFLIGHT_RETENTION_S),
            redis_url=self.settings.REDIS_URL,
            socket_timeout=self.settings.REDIS_TIMEOUT_MS / 1000,
        )
        self.registry = InFlightRegistry(
            retention_seconds=self.settings.INFLIGHT_RETENTION_S,
            outcome_store=self.outcome_store,
        )
        self.orchestrator = AnchorOrchestrator(
            self.content_store,
            self.ledger,
            self.registry,
            self._orchestrator_config(),
        )
        log.info(
            "container_ready",
            ledger=self.ledger.name,
            content=self.content_store.name,
            outcome_store=self.outcome_store.backend,
        )

    def resolve_secret(self, key: str) -> str:
        """Instance-level secret resolution: Vault → env → settings.

        Ne journalise jamais la valeur du secret.
        """
        if self.vault.enabled:
            val = self.vault.get_secret(key)
            if val:
                return val
        env_val = os.getenv(key)
        if env_val:
            return env_val
        return getattr(self.settings, key, "") or ""

    def _orchestrator_config(self) -> OrchestratorConfig:
        s = self.settings
        return OrchestratorConfig(
            confirmations=s.CONFIRMATIONS,
            confirmation_timeout_s=s.CONFIRMATION_TIMEOUT_S,
            upload_policy=RetryPolicy(
                max_attempts=s.UPLOAD_MAX_ATTEMPTS,
                base_delay=s.RETRY_BASE_DELAY_S,
                max_delay=s.RETRY_MAX_DELAY_S,
            ),
            submit_policy=RetryPolicy(
                max_attempts=s.SUBMIT_MAX_ATTEMPTS,
                base_delay=s.RETRY_BASE_DELAY_S,
                max_delay=s.RETRY_MAX_DELAY_S,
            ),
            event_schema=CreationEventSchema(
                name=s.LEDGER_CREATE_EVENT, id_field=s.LEDGER_CREATE_EVENT_ID_FIELD
            ),
        )

    def _build_content_store(self) -> ContentStoreClient:
        backend = self.settings.CONTENT_BACKEND.lower()
        if backend == "memory":
            return InMemoryContentStore()
        if backend != "pinata":
            raise RuntimeError(f"Unknown CONTENT_BACKEND: {backend}")
        api_key = self.resolve_secret("PINATA_API_KEY")
        secret = self.resolve_secret("PINATA_SECRET_API_KEY")
        if not (api_key and secret):
            raise RuntimeError(
                "PINATA_API_KEY and PINATA_SECRET_API_KEY are required when CONTENT_BACKEND=pinata"
            )
        return PinataContentStore(
            api_key,
            secret,
            base_url=self.settings.PINATA_BASE_URL,
            timeout_s=self.settings.UPLOAD_TIMEOUT_S,
        )

    def _build_ledger(self) -> LedgerClient:
        backend = self.settings.LEDGER_BACKEND.lower()
        if backend == "memory":
            return InMemoryLedger()
        if backend != "web3":
            raise RuntimeError(f"Unknown LEDGER_BACKEND: {backend}")
        private_key = self.resolve_secret("PRIVATE_KEY")
        missing = [
            name
            for name, value in (
                ("RPC_URL", self.settings.RPC_URL),
                ("PRIVATE_KEY", private_key),
                ("CONTRACT_ADDRESS", self.settings.CONTRACT_ADDRESS),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"{', '.join(missing)} required when LEDGER_BACKEND=web3")
        return Web3Ledger(
            self.settings.RPC_URL,
            private_key,
            self.settings.CONTRACT_ADDRESS,
            load_abi(self.settings.CONTRACT_ABI_PATH),
            create_fn=self.settings.LEDGER_CREATE_FN,
            update_fn=self.settings.LEDGER_UPDATE_FN,
            read_fn=self.settings.LEDGER_READ_FN,
            commitment_fn=self.settings.LEDGER_COMMITMENT_FN,
            poll_interval=self.settings.RECEIPT_POLL_INTERVAL_S,
        )

    async def aclose(self) -> None:
        """Termine les opérations en vol puis ferme les clients réseau."""
        await self.orchestrator.drain()
        await self.content_store.aclose()
        await self.ledger.aclose()
