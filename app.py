
# file: app.py
from __future__ import annotations

import math
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Dict

import pandas as pd
import streamlit as st

from nfse_parser import NfseData, try_parse_nfse, __version__ as PARSER_VERSION
from tiss_builder import DadosManuais, TipoGuia, build_tiss_document
from tiss_reader import audit_por_guia, read_tiss_resumo
from tiss_settings import configure_logging

logger = configure_logging()

# =========================================================
# Config & Header
# =========================================================
st.set_page_config(page_title="NFS-e → TISS (Resumo de Internação)", layout="wide")
st.title("Conversor NFS-e → XML TISS 4.01.00")
st.caption(f"Lê a NFS-e, extrai paciente/diárias/competência da discriminação e gera a guia de resumo de internação • Parser {PARSER_VERSION}")

if 'dados' not in st.session_state:
    st.session_state.dados = None
    st.session_state.arquivo = None

# =========================================================
# FORMATAÇÃO DE MOEDA (BR)
# =========================================================
def format_currency_br(val) -> str:
    """
    Converte número em string 'R$ 1.234,56'.
    - Valores None/NaN/Inf/Inválidos -> 'R$ 0,00'
    """
    try:
        v = float(Decimal(str(val)))
    except Exception:
        v = 0.0
    if not math.isfinite(v):
        v = 0.0
    inteiro = int(abs(v))
    centavos = int(round((abs(v) - inteiro) * 100))
    s = f"R$ {inteiro:,}".replace(",", ".") + f",{centavos:02d}"
    return f"-{s}" if v < 0 else s


def _iso_to_date(txt: str | None) -> date | None:
    try:
        return date.fromisoformat(txt) if txt else None
    except ValueError:
        return None


def _df_dados(dados: NfseData) -> pd.DataFrame:
    linhas: Dict[str, str] = {k: v for k, v in asdict(dados).items() if k != 'xml_original'}
    df = pd.DataFrame({'campo': list(linhas.keys()), 'valor': list(linhas.values())})
    df['valor'] = df['valor'].fillna('—')
    return df

# =========================================================
# Upload
# =========================================================
arquivo = st.file_uploader("Selecione o XML da NFS-e", type=['xml'])

if arquivo is not None and arquivo.name != st.session_state.arquivo:
    st.session_state.arquivo = arquivo.name
    st.session_state.dados = try_parse_nfse(arquivo)
    if st.session_state.dados is None:
        st.error("Não foi possível interpretar o XML. Verifique se o arquivo é uma NFS-e válida.")

dados: NfseData | None = st.session_state.dados

if dados is not None:
    st.subheader("Dados extraídos da NFS-e")
    col1, col2 = st.columns([2, 1])
    with col1:
        st.dataframe(_df_dados(dados), use_container_width=True, hide_index=True)
    with col2:
        st.metric("Valor total", format_currency_br(dados.valor_total))
        if dados.valor_diaria:
            st.metric("Valor da diária", format_currency_br(dados.valor_diaria))
        st.metric("Diárias", dados.quantidade_diarias or "—")

    # =========================================================
    # Dados manuais
    # =========================================================
    with st.form("dados_manuais"):
        st.markdown("### Dados complementares (operadora)")
        c1, c2, c3 = st.columns(3)
        with c1:
            codigo_prestador = st.text_input("Código do prestador na operadora")
            numero_carteira = st.text_input("Nº da carteira do beneficiário")
        with c2:
            tipo_guia = st.selectbox(
                "Tipo de guia",
                options=[TipoGuia.RESUMO_INTERNACAO, TipoGuia.SADT],
                format_func=lambda t: "Resumo de Internação" if t == TipoGuia.RESUMO_INTERNACAO else "SP/SADT (gera resumo)",
            )
            codigo_procedimento = st.text_input("Código do procedimento", placeholder="60000775")
        with c3:
            inicio = st.date_input("Início do faturamento", value=_iso_to_date(dados.periodo_inicio) or date.today())
            fim = st.date_input("Fim do faturamento", value=_iso_to_date(dados.periodo_fim) or date.today())
        gerar = st.form_submit_button("Gerar XML TISS", type="primary")

    if gerar:
        manual = DadosManuais(
            codigo_prestador=codigo_prestador,
            numero_carteira=numero_carteira,
            tipo_guia=tipo_guia,
            periodo_inicio=inicio.isoformat() if inicio else '',
            periodo_fim=fim.isoformat() if fim else '',
            codigo_procedimento=codigo_procedimento,
        )
        doc = build_tiss_document(dados, manual)

        resumo = read_tiss_resumo(doc.xml)
        st.subheader("Resumo do XML gerado")
        df_resumo = pd.DataFrame([resumo])
        df_resumo['valor_total'] = df_resumo['valor_total'].apply(format_currency_br)
        st.dataframe(df_resumo, use_container_width=True, hide_index=True)

        df_guia = pd.DataFrame(audit_por_guia(doc.xml))
        for c in ('valorUnitario', 'valorTotalGeral'):
            if c in df_guia.columns:
                df_guia[c] = df_guia[c].apply(format_currency_br)
        st.dataframe(df_guia, use_container_width=True, hide_index=True)

        with st.expander("Ver XML"):
            st.code(doc.xml, language="xml")

        nome = f"tiss_{dados.numero_nfse or 'nfse'}.xml"
        st.download_button("Baixar XML TISS", doc.xml.encode('utf-8'), file_name=nome, mime="application/xml")
        logger.info(f"XML disponibilizado para download: {nome}")
