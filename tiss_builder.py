
# file: tiss_builder.py
from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from enum import Enum
from typing import Callable, Optional
import xml.etree.ElementTree as ET

from nfse_parser import NfseData
from tiss_settings import Settings, get_settings

# Namespace TISS
ANS_URI = 'http://www.ans.gov.br/padroes/tiss/schemas'
XSI_URI = 'http://www.w3.org/2001/XMLSchema-instance'
ANS_NS = {'ans': ANS_URI}
TISS_VERSAO = '4.01.00'
SCHEMA_LOCATION = f'{ANS_URI} {ANS_URI}/tissV4_01_00.xsd'

NAO_INFORMADO = 'NAO INFORMADO'
PRESTADOR_PADRAO = 'PRESTADOR'

ET.register_namespace('ans', ANS_URI)
ET.register_namespace('xsi', XSI_URI)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class TipoGuia(str, Enum):
    SADT = 'SADT'
    RESUMO_INTERNACAO = 'RESUMO_INTERNACAO'


@dataclass(frozen=True)
class DadosManuais:
    """Dados digitados pelo operador (formulário)."""
    codigo_prestador: str = ''
    numero_carteira: str = ''
    tipo_guia: TipoGuia = TipoGuia.RESUMO_INTERNACAO
    periodo_inicio: str = ''   # AAAA-MM-DD
    periodo_fim: str = ''      # AAAA-MM-DD
    codigo_procedimento: str = ''


@dataclass(frozen=True)
class TissDocumento:
    xml: str
    hash: str


# ----------------------------
# Helpers
# ----------------------------
def clean_digits(val: Optional[str]) -> str:
    """Remove máscara: só dígitos 0-9."""
    return re.sub(r'[^0-9]', '', val or '')


_MAX_DIGITOS_INTEIROS = 60


def format_currency(val) -> str:
    """
    Normaliza valor para '1234.56'.
    Aceita ponto ou vírgula decimal ('1.000,00' / '1000.00').
    None/inválido/não finito/negativo => '0.00'.
    """
    if val is None:
        return '0.00'
    txt = str(val).strip()
    if ',' in txt:
        txt = txt.replace('.', '').replace(',', '.')
    try:
        d = Decimal(txt)
        if not d.is_finite() or d.is_signed():
            return '0.00'
        if d.adjusted() > _MAX_DIGITOS_INTEIROS:
            raise InvalidOperation(txt)
        with localcontext() as ctx:
            # precisão suficiente para a parte inteira + centavos
            ctx.prec = max(ctx.prec, d.adjusted() + 3)
            return format(d.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP), 'f')
    except InvalidOperation:
        if txt:
            logger.warning(f"Valor monetário inválido: {val!r}; usando 0.00")
        return '0.00'


def _observacao(descricao: Optional[str], settings: Settings) -> str:
    if not descricao or not descricao.strip():
        return settings.observacao_padrao
    txt = re.sub(r'\s*[\r\n]+\s*', ' ', descricao).strip()
    return txt[:settings.observacao_max]


def _ele(parent: ET.Element, tag: str, text: Optional[str] = None) -> ET.Element:
    el = ET.SubElement(parent, f'{{{ANS_URI}}}{tag}')
    if text is not None:
        el.text = text
    return el


# ----------------------------
# Montagem da guia
# ----------------------------
def _periodo(dados: NfseData, manual: DadosManuais, agora: datetime) -> tuple[str, str]:
    """
    Período de faturamento:
      1) período extraído da Discriminacao
      2) período digitado pelo operador
      3) data de emissão da NFS-e
      4) data atual
    """
    hoje = agora.date().isoformat()
    inicio = dados.periodo_inicio or (manual.periodo_inicio or '').strip() or dados.data_emissao or hoje
    fim = dados.periodo_fim or (manual.periodo_fim or '').strip() or dados.data_emissao or hoje
    return inicio, fim


def _cabecalho(root: ET.Element, manual: DadosManuais, agora: datetime, settings: Settings) -> None:
    cab = _ele(root, 'cabecalho')
    ident = _ele(cab, 'identificacaoTransacao')
    _ele(ident, 'tipoTransacao', 'ENVIO_LOTE_GUIAS')
    _ele(ident, 'sequencialTransacao', '1')
    _ele(ident, 'dataRegistroTransacao', agora.strftime('%Y-%m-%d'))
    _ele(ident, 'horaRegistroTransacao', agora.strftime('%H:%M:%S'))
    origem = _ele(cab, 'origem')
    prest = _ele(origem, 'identificacaoPrestador')
    _ele(prest, 'codigoPrestadorNaOperadora', (manual.codigo_prestador or '').strip())
    destino = _ele(cab, 'destino')
    _ele(destino, 'registroANS', settings.registro_ans)
    _ele(cab, 'Padrao', TISS_VERSAO)


def _guia_resumo_internacao(
    guias: ET.Element,
    dados: NfseData,
    manual: DadosManuais,
    agora: datetime,
    settings: Settings,
) -> ET.Element:
    inicio, fim = _periodo(dados, manual, agora)
    numero_guia = clean_digits(dados.numero_nfse) or '1'
    valor_total = format_currency(dados.valor_total)
    valor_unitario = format_currency(dados.valor_diaria or dados.valor_total)
    quantidade = dados.quantidade_diarias or '1'
    codigo = (manual.codigo_procedimento or '').strip() or settings.codigo_procedimento_padrao

    guia = _ele(guias, 'guiaResumoInternacao')

    cab = _ele(guia, 'cabecalhoGuia')
    _ele(cab, 'registroANS', settings.registro_ans)
    _ele(cab, 'numeroGuiaPrestador', numero_guia)
    _ele(guia, 'numeroGuiaSolicitacaoInternacao', numero_guia)

    aut = _ele(guia, 'dadosAutorizacao')
    _ele(aut, 'dataAutorizacao', inicio)

    benef = _ele(guia, 'dadosBeneficiario')
    _ele(benef, 'numeroCarteira', clean_digits(manual.numero_carteira))
    _ele(benef, 'atendimentoRN', 'N')
    _ele(benef, 'nomeBeneficiario', dados.paciente_nome or NAO_INFORMADO)

    exe = _ele(guia, 'dadosExecutante')
    contratado = _ele(exe, 'contratadoExecutante')
    _ele(contratado, 'cnpjContratado', clean_digits(dados.prestador_cnpj))
    _ele(contratado, 'nomeContratado', dados.prestador_nome or PRESTADOR_PADRAO)
    _ele(exe, 'CNES', settings.cnes)

    inter = _ele(guia, 'dadosInternacao')
    _ele(inter, 'caraterAtendimento', '1')
    _ele(inter, 'tipoFaturamento', '4')
    _ele(inter, 'dataInicioFaturamento', inicio)
    _ele(inter, 'horaInicioFaturamento', '00:00:00')
    _ele(inter, 'dataFinalFaturamento', fim)
    _ele(inter, 'horaFinalFaturamento', '23:59:59')
    _ele(inter, 'tipoInternacao', '1')
    _ele(inter, 'regimeInternacao', '1')

    saida = _ele(guia, 'dadosSaidaInternacao')
    _ele(saida, 'motivoEncerramento', '12')

    procs = _ele(guia, 'procedimentosExecutados')
    proc = _ele(procs, 'procedimentoExecutado')
    _ele(proc, 'sequencialItem', '1')
    _ele(proc, 'dataExecucao', inicio)
    p = _ele(proc, 'procedimento')
    _ele(p, 'codigoTabela', settings.codigo_tabela)
    _ele(p, 'codigoProcedimento', codigo)
    _ele(p, 'descricaoProcedimento', settings.descricao_procedimento)
    _ele(proc, 'quantidadeExecutada', quantidade)
    _ele(proc, 'reducaoAcrescimo', '1.00')
    _ele(proc, 'valorUnitario', valor_unitario)
    _ele(proc, 'valorTotal', valor_total)

    vt = _ele(guia, 'valorTotal')
    _ele(vt, 'valorProcedimentos', '0.00')
    _ele(vt, 'valorDiarias', valor_total)
    for tag in ('valorTaxasAlugueis', 'valorMateriais', 'valorMedicamentos',
                'valorOPME', 'valorGasesMedicinais'):
        _ele(vt, tag, '0.00')
    _ele(vt, 'valorTotalGeral', valor_total)

    _ele(guia, 'observacao', _observacao(dados.descricao, settings))
    return guia


def build_tiss_tree(
    dados: NfseData,
    manual: DadosManuais,
    *,
    clock: Clock | None = None,
    settings: Settings | None = None,
) -> ET.Element:
    """Monta a árvore ans:mensagemTISS (sem epílogo)."""
    settings = settings or get_settings()
    agora = (clock or datetime.now)()

    if manual.tipo_guia != TipoGuia.RESUMO_INTERNACAO:
        logger.warning(f"Tipo de guia {manual.tipo_guia} não suportado; gerando RESUMO_INTERNACAO")

    root = ET.Element(f'{{{ANS_URI}}}mensagemTISS', {f'{{{XSI_URI}}}schemaLocation': SCHEMA_LOCATION})
    _cabecalho(root, manual, agora, settings)

    ppo = _ele(root, 'prestadorParaOperadora')
    lote = _ele(ppo, 'loteGuias')
    _ele(lote, 'numeroLote', settings.numero_lote)
    guias = _ele(lote, 'guiasTISS')
    _guia_resumo_internacao(guias, dados, manual, agora, settings)
    return root


# ----------------------------
# Hash / epílogo
# ----------------------------
def compute_hash(root: ET.Element) -> str:
    """MD5 da serialização compacta do documento (sem epílogo)."""
    conteudo = ET.tostring(root, encoding='unicode')
    return hashlib.md5(conteudo.encode('utf-8')).hexdigest()


def append_epilogue(root: ET.Element, hash_value: str) -> ET.Element:
    epilogo = _ele(root, 'epilogo')
    _ele(epilogo, 'hash', hash_value)
    return root


def serialize(root: ET.Element) -> str:
    ET.indent(root, space='  ')
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding='unicode')


# ----------------------------
# API pública
# ----------------------------
def build_tiss_document(
    dados: NfseData,
    manual: DadosManuais,
    *,
    clock: Clock | None = None,
    settings: Settings | None = None,
) -> TissDocumento:
    """
    Gera o XML TISS completo (nunca falha por falta de dados:
    campos ausentes recebem os valores padrão).
    """
    root = build_tiss_tree(dados, manual, clock=clock, settings=settings)
    hash_value = compute_hash(root)
    append_epilogue(root, hash_value)
    xml = serialize(root)
    logger.info(f"TISS gerado: guia={dados.numero_nfse} hash={hash_value}")
    return TissDocumento(xml=xml, hash=hash_value)


def generate_tiss(
    dados: NfseData,
    manual: DadosManuais,
    *,
    clock: Clock | None = None,
    settings: Settings | None = None,
) -> str:
    return build_tiss_document(dados, manual, clock=clock, settings=settings).xml
