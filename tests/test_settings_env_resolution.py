"""
Tests pour la résolution des variables d'environnement.

Ce module teste le chargement et la résolution des variables d'environnement à partir de fichiers
.env personnalisés dans les settings.
"""

from __future__ import annotations

import importlib
from pathlib import Path

EXPECTED_CONFIRMATIONS = 3


def test_settings_reads_env_file(tmp_path: Path, monkeypatch) -> None:
    """
    Teste que les settings lisent correctement les fichiers d'environnement.

    Vérifie que les variables définies dans un fichier .env personnalisé sont chargées et
    appliquées aux settings.
    """
    env = tmp_path / ".env.custom"
    env.write_text(
        "LEDGER_BACKEND=memory\nCONFIRMATIONS=3\nLEDGER_CREATE_EVENT=Minted\n", encoding="utf-8"
    )
    monkeypatch.setenv("ENV_FILE", str(env))
    for key in ("LEDGER_BACKEND", "CONFIRMATIONS", "LEDGER_CREATE_EVENT"):
        monkeypatch.delenv(key, raising=False)

    # Reload settings module to pick up new ENV_FILE
    settings_mod = importlib.import_module("anchor_backend.core.settings")
    importlib.reload(settings_mod)
    try:
        s = settings_mod.get_settings()
        assert s.LEDGER_BACKEND == "memory"
        assert s.CONFIRMATIONS == EXPECTED_CONFIRMATIONS
        assert s.LEDGER_CREATE_EVENT == "Minted"
    finally:
        monkeypatch.delenv("ENV_FILE")
        importlib.reload(settings_mod)
