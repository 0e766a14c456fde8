
# file: nfse_parser.py
from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import IO, Callable, Dict, List, Optional, Tuple, Union
import xml.etree.ElementTree as ET

from tiss_settings import Settings, get_settings

__version__ = "2026.10.17-nfse-01"

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class NfseParsingError(Exception):
    """Erro de interpretação de um XML de NFS-e."""
    pass


@dataclass(frozen=True)
class NfseData:
    """
    Dados extraídos de uma NFS-e.
    Campos opcionais ficam None quando ausentes (nunca placeholder);
    valores padrão só são aplicados na geração do TISS.
    """
    prestador_cnpj: str
    tomador_cnpj: str
    descricao: str
    xml_original: str
    numero_nfse: Optional[str] = None
    prestador_nome: Optional[str] = None
    data_emissao: Optional[str] = None     # AAAA-MM-DD
    valor_total: Optional[str] = None      # decimal com ponto
    # enriquecidos a partir da Discriminacao
    paciente_nome: Optional[str] = None
    referencia: Optional[str] = None       # ex.: 'DEZEMBRO/2024'
    quantidade_diarias: Optional[str] = None
    valor_diaria: Optional[str] = None
    periodo_inicio: Optional[str] = None   # AAAA-MM-DD
    periodo_fim: Optional[str] = None      # AAAA-MM-DD


# ----------------------------
# Namespaces
# ----------------------------
_PREFIXO_TAG = re.compile(r'<(/?)[A-Za-z0-9]+:')


def normalize_namespaces(text: str) -> str:
    """
    Remove prefixos de namespace das tags: <ns1:CompNfse> -> <CompNfse>.
    Reescrita puramente textual (não distingue tags de texto/atributos).
    Idempotente.
    """
    return _PREFIXO_TAG.sub(r'<\1', text)


def strip_namespaces(root: ET.Element) -> ET.Element:
    """Troca '{uri}Nome' por 'Nome' em toda a árvore (in place)."""
    for el in root.iter():
        if isinstance(el.tag, str) and '}' in el.tag:
            el.tag = el.tag.split('}', 1)[1]
    return root


def _read_source(source: Union[str, bytes, IO]) -> str:
    """Aceita texto, bytes (UTF-8 ou ISO-8859-1) ou arquivo (UploadedFile/BytesIO)."""
    if hasattr(source, 'read'):
        if hasattr(source, 'seek'):
            source.seek(0)
        source = source.read()
    if isinstance(source, bytes):
        try:
            return source.decode('utf-8-sig')
        except UnicodeDecodeError:
            return source.decode('iso-8859-1')
    return source


def _parse_xml(text: str) -> ET.Element:
    """
    Parse com namespaces e leitura por nome local.
    Se o XML usar prefixos não declarados, tenta de novo após a remoção textual.
    """
    if not text or not text.strip():
        raise NfseParsingError('Documento vazio.')
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        logger.debug(f"Parse com namespaces falhou ({e}); removendo prefixos")
        try:
            root = ET.fromstring(normalize_namespaces(text))
        except ET.ParseError as e2:
            raise NfseParsingError(f'XML inválido: {e2}') from e2
    return strip_namespaces(root)


# ----------------------------
# Helpers
# ----------------------------
def find_text(context: Optional[ET.Element], tag: str) -> str:
    """
    Texto (strip) do primeiro elemento `tag` dentro de `context`
    (incluindo o próprio context), ou string vazia.
    """
    if context is None:
        return ''
    el = next(context.iter(tag), None)
    if el is None:
        return ''
    return ''.join(el.itertext()).strip()


def _first(root: ET.Element, *tags: str) -> Optional[ET.Element]:
    for tag in tags:
        el = next(root.iter(tag), None)
        if el is not None:
            return el
    return None


def _in_block(root: ET.Element, block: Optional[ET.Element], *tags: str) -> str:
    """Busca no bloco; busca no documento inteiro só quando o bloco não existe."""
    context = block if block is not None else root
    for tag in tags:
        txt = find_text(context, tag)
        if txt:
            return txt
    return ''


def _outside_blocks(root: ET.Element, blocks: List[ET.Element], *tags: str) -> str:
    """Busca no documento inteiro ignorando os elementos dos blocos informados."""
    ignorar = {el for block in blocks for el in block.iter()}
    for tag in tags:
        for el in root.iter(tag):
            if el in ignorar:
                continue
            txt = ''.join(el.itertext()).strip()
            if txt:
                return txt
    return ''


def _br_decimal(txt: str) -> str:
    """'1.234,56' -> '1234.56' (notação brasileira)."""
    return txt.replace('.', '').replace(',', '.')


def _normalize_value(txt: str) -> Optional[str]:
    """Valores da NFS-e já vêm com ponto; vírgula indica notação BR."""
    txt = txt.strip()
    if not txt:
        return None
    return _br_decimal(txt) if ',' in txt else txt


def _iso_date(txt: str) -> Optional[str]:
    m = re.match(r'(\d{4})-(\d{2})-(\d{2})', txt)
    if m:
        return m.group(0)
    m = re.match(r'(\d{2})/(\d{2})/(\d{4})', txt)
    if m:
        return f"{m.group(3)}-{m.group(2)}-{m.group(1)}"
    if txt:
        logger.warning(f"DataEmissao em formato desconhecido: {txt!r}")
    return None


# ----------------------------
# Campos estruturais
# ----------------------------
def collect_fields(
    root: ET.Element,
    xml_original: str,
    *,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> NfseData:
    """
    Plano fixo de busca:
      - CNPJ do prestador dentro de PrestadorServico/Prestador
      - CNPJ/CPF do tomador dentro de TomadorServico/Tomador; sem o bloco,
        no documento inteiro fora dos blocos do prestador
      - demais campos no InfNfse ou no documento inteiro
    """
    settings = settings or get_settings()

    prestador = _first(root, 'PrestadorServico', 'Prestador')
    tomador = _first(root, 'TomadorServico', 'Tomador')
    blocos_prestador = [el for tag in ('PrestadorServico', 'Prestador') for el in root.iter(tag)]
    inf_nfse = _first(root, 'InfNfse')
    valores = _first(root, 'Valores')

    valor_total = (find_text(valores, 'ValorServicos')
                   or find_text(root, 'ValorServicos')
                   or find_text(root, 'ValorLiquidoNfse'))

    data_emissao = _iso_date(find_text(root, 'DataEmissao'))
    if data_emissao is None and settings.issue_date_fallback == 'today':
        data_emissao = (clock or datetime.now)().date().isoformat()
        logger.info(f"DataEmissao ausente; usando data atual {data_emissao}")

    return NfseData(
        prestador_cnpj=_in_block(root, prestador, 'Cnpj', 'Cpf'),
        tomador_cnpj=(_in_block(root, tomador, 'Cnpj', 'Cpf') if tomador is not None
                      else _outside_blocks(root, blocos_prestador, 'Cnpj', 'Cpf')),
        descricao=find_text(root, 'Discriminacao'),
        xml_original=xml_original,
        numero_nfse=_in_block(root, inf_nfse, 'Numero') or None,
        prestador_nome=_in_block(root, prestador, 'RazaoSocial', 'NomeFantasia') or None,
        data_emissao=data_emissao,
        valor_total=_normalize_value(valor_total),
    )


# ----------------------------
# Heurísticas da Discriminacao
# ----------------------------
@dataclass(frozen=True)
class RegraDescricao:
    """Regra independente: padrão + campos que preenche."""
    nome: str
    padrao: re.Pattern
    campos: Tuple[str, ...]
    converter: Callable[[re.Match], Optional[Dict[str, str]]]


MESES = {
    'JANEIRO': 1, 'FEVEREIRO': 2, 'MARÇO': 3, 'MARCO': 3, 'ABRIL': 4,
    'MAIO': 5, 'JUNHO': 6, 'JULHO': 7, 'AGOSTO': 8, 'SETEMBRO': 9,
    'OUTUBRO': 10, 'NOVEMBRO': 11, 'DEZEMBRO': 12,
}
_NOMES_MES = {v: k for k, v in MESES.items() if k != 'MARCO'}


def month_period(ano: int, mes: int) -> Tuple[str, str]:
    """Primeiro e último dia do mês (considera ano bissexto)."""
    ultimo = calendar.monthrange(ano, mes)[1]
    return date(ano, mes, 1).isoformat(), date(ano, mes, ultimo).isoformat()


def _periodo(ano: int, mes: Optional[int]) -> Optional[Dict[str, str]]:
    if mes is None or not 1 <= mes <= 12 or ano < 1:
        return None
    inicio, fim = month_period(ano, mes)
    return {
        'periodo_inicio': inicio,
        'periodo_fim': fim,
        'referencia': f"{_NOMES_MES[mes]}/{ano}",
    }


def _periodo_mes_nome(m: re.Match) -> Optional[Dict[str, str]]:
    # IGNORECASE aceita variantes (ex.: 'İ') que não estão em MESES
    return _periodo(int(m.group(2)), MESES.get(m.group(1).upper()))


def _paciente(m: re.Match) -> Optional[Dict[str, str]]:
    nome = m.group(1).strip()
    return {'paciente_nome': nome} if nome else None


REGRAS_DESCRICAO: Tuple[RegraDescricao, ...] = (
    RegraDescricao(
        'paciente',
        re.compile(r'Paciente\s*[:.\-]+[ \t]*([^\r\n]+)', re.IGNORECASE),
        ('paciente_nome',),
        _paciente,
    ),
    RegraDescricao(
        'quantidade_diarias',
        re.compile(r'(?<![\d,.])\b(\d+)\s*DI[ÁA]RIAS\b', re.IGNORECASE),
        ('quantidade_diarias',),
        lambda m: {'quantidade_diarias': str(int(m.group(1)))},
    ),
    RegraDescricao(
        'valor_diaria',
        re.compile(r'VALOR\s+(?:D[AO]S?\s+)?DI[ÁA]RIAS?\s*[:\-]?\s*R\$\s*(\d[\d.]*(?:,\d+)?)', re.IGNORECASE),
        ('valor_diaria',),
        lambda m: {'valor_diaria': _br_decimal(m.group(1))},
    ),
    RegraDescricao(
        'periodo_mes_ano',
        re.compile(r'\b(' + '|'.join(MESES) + r')\s*(?:DE\s+)?(\d{4})\b', re.IGNORECASE),
        ('periodo_inicio', 'periodo_fim', 'referencia'),
        _periodo_mes_nome,
    ),
    RegraDescricao(
        'periodo_ref',
        re.compile(r'REF(?:ER[ÊE]NCIA)?\s*[:.]?\s*(\d{1,2})/(\d{4})\b', re.IGNORECASE),
        ('periodo_inicio', 'periodo_fim', 'referencia'),
        lambda m: _periodo(int(m.group(2)), int(m.group(1))),
    ),
    # só vale quando a estrutura da NFS-e não trouxe o valor
    RegraDescricao(
        'valor_total_descricao',
        re.compile(r'Valor\s+Total\s*[:\-]?\s*(?:R\$)?\s*(\d[\d.]*(?:,\d+)?)', re.IGNORECASE),
        ('valor_total',),
        lambda m: {'valor_total': _br_decimal(m.group(1))},
    ),
)


def extract_from_description(
    dados: NfseData,
    regras: Tuple[RegraDescricao, ...] = REGRAS_DESCRICAO,
) -> NfseData:
    """
    Aplica as regras em ordem. Cada regra só preenche campos ainda vazios;
    a falta de match deixa o campo None.
    """
    if not dados.descricao:
        return dados

    novos: Dict[str, str] = {}
    for regra in regras:
        pendentes = [c for c in regra.campos if getattr(dados, c) is None and c not in novos]
        if not pendentes:
            continue
        m = regra.padrao.search(dados.descricao)
        if not m:
            continue
        valores = regra.converter(m)
        if not valores:
            continue
        for campo, valor in valores.items():
            if campo in pendentes and valor:
                novos[campo] = valor
        logger.debug(f"Regra '{regra.nome}' aplicada: {valores}")

    return replace(dados, **novos) if novos else dados


# ----------------------------
# API pública
# ----------------------------
def parse_nfse(
    source: Union[str, bytes, IO],
    *,
    settings: Settings | None = None,
    clock: Clock | None = None,
) -> NfseData:
    """
    Lê uma NFS-e (texto, bytes ou arquivo) e devolve os dados enriquecidos.
    Levanta NfseParsingError quando o documento não pode ser interpretado.
    """
    text = _read_source(source)
    root = _parse_xml(text)
    dados = collect_fields(root, text, settings=settings, clock=clock)
    dados = extract_from_description(dados)
    logger.info(
        f"NFS-e lida: numero={dados.numero_nfse} prestador={dados.prestador_cnpj} "
        f"valor={dados.valor_total} paciente={dados.paciente_nome}"
    )
    return dados


def try_parse_nfse(source: Union[str, bytes, IO], **kwargs) -> Optional[NfseData]:
    """Como parse_nfse, mas devolve None em vez de levantar NfseParsingError."""
    try:
        return parse_nfse(source, **kwargs)
    except NfseParsingError as e:
        logger.warning(f"Falha ao interpretar NFS-e: {e}")
        return None
