
# file: tiss_settings.py
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Cabeçalho / identificação da operadora
    registro_ans: str = Field("000000", alias="TISS_REGISTRO_ANS")
    cnes: str = Field("9999999", alias="TISS_CNES")
    numero_lote: str = Field("1", alias="TISS_NUMERO_LOTE")

    # Procedimento (diária)
    codigo_procedimento_padrao: str = Field("60000775", alias="TISS_CODIGO_PROCEDIMENTO")
    codigo_tabela: str = Field("18", alias="TISS_CODIGO_TABELA")
    descricao_procedimento: str = Field("DIARIA HOSPITALAR", alias="TISS_DESCRICAO_PROCEDIMENTO")

    # Textos padrão
    observacao_padrao: str = Field("SERVICOS HOSPITALARES CONFORME NFS-E", alias="TISS_OBSERVACAO_PADRAO")
    observacao_max: int = Field(500, alias="TISS_OBSERVACAO_MAX")

    # NFS-e sem DataEmissao: 'absent' mantém ausente, 'today' usa a data do relógio
    issue_date_fallback: Literal["absent", "today"] = Field("absent", alias="NFSE_ISSUE_DATE_FALLBACK")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "populate_by_name": True}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> logging.Logger:
    """Configura o logging raiz conforme LOG_LEVEL."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return logging.getLogger("nfse2tiss")
