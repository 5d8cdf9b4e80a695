"""Définition et chargement des paramètres de configuration applicative.

Objectif du module
------------------
- Centraliser les paramètres (env/.env) via Pydantic Settings
- Résoudre le fichier `.env` à utiliser selon la stratégie: ENV_FILE > .env.{APP_ENV} > .env
- Décrire la surface du contrat (fonctions, événement de création) sans la coder en dur
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Détermination du fichier .env à utiliser avec priorité:
# 1) ENV_FILE (chemin explicite)
# 2) .env.{APP_ENV} si présent
# 3) .env (défaut)
_cwd = Path.cwd()
_env_file_from_env = os.getenv("ENV_FILE")
if _env_file_from_env:
    _ENV_FILE_PATH = _env_file_from_env
else:
    _app_env = os.getenv("APP_ENV", "dev")
    _candidate_specific = _cwd / f".env.{_app_env}"
    _candidate_default = _cwd / ".env"
    if _candidate_specific.exists():
        _ENV_FILE_PATH = _candidate_specific
    else:
        _ENV_FILE_PATH = _candidate_default


class Settings(BaseSettings):
    """Modèle de configuration chargé depuis l'environnement et .env."""

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE_PATH,
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
    )
    APP_NAME: str = "nft-anchor-backend"
    APP_ENV: str = "dev"
    APP_DEBUG: bool = True
    APP_HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Ledger
    LEDGER_BACKEND: str = "web3"  # "web3" | "memory"
    RPC_URL: str | None = None
    PRIVATE_KEY: str | None = None
    CONTRACT_ADDRESS: str | None = None
    CONTRACT_ABI_PATH: str | None = None
    LEDGER_CREATE_FN: str = "safeMint"
    LEDGER_UPDATE_FN: str = "commitEvolution"
    LEDGER_READ_FN: str = "tokenURI"
    # Getter du hash stocké (ex: "tokenHash"); absent du contrat par défaut.
    LEDGER_COMMITMENT_FN: str | None = None
    LEDGER_CREATE_EVENT: str = "Transfer"
    LEDGER_CREATE_EVENT_ID_FIELD: str = "tokenId"
    CONFIRMATIONS: int = 1
    CONFIRMATION_TIMEOUT_S: float = 120.0
    RECEIPT_POLL_INTERVAL_S: float = 1.0

    # Stockage adressé par contenu
    CONTENT_BACKEND: str = "pinata"  # "pinata" | "memory"
    PINATA_API_KEY: str | None = None
    PINATA_SECRET_API_KEY: str | None = None
    PINATA_BASE_URL: str = "https://api.pinata.cloud/pinning"
    UPLOAD_TIMEOUT_S: float = 60.0

    # Retries / idempotence
    UPLOAD_MAX_ATTEMPTS: int = 3
    SUBMIT_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_S: float = 0.5
    RETRY_MAX_DELAY_S: float = 8.0
    INFLIGHT_RETENTION_S: float = 120.0
    REDIS_URL: str | None = None
    REDIS_TIMEOUT_MS: int = 500

    # Vault/Sécurité
    VAULT_ENABLED: bool = False


def get_settings() -> Settings:
    """Construit et retourne la configuration de l'application."""
    return Settings()
