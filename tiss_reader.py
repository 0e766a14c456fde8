
# file: tiss_reader.py
from __future__ import annotations

import hashlib
from decimal import Decimal
from pathlib import Path
from typing import IO, Dict, List, Union
import xml.etree.ElementTree as ET

from tiss_builder import ANS_NS

__version__ = "2026.10.17-resumo-01"


class TissParsingError(Exception):
    """Erro de parsing para arquivos TISS XML."""
    pass


# ----------------------------
# Helpers
# ----------------------------
def _dec(txt: str | None) -> Decimal:
    """
    Converte string numérica para Decimal; vazio/None => 0.
    Troca ',' por '.' por segurança.
    """
    if not txt:
        return Decimal('0')
    return Decimal(txt.strip().replace(',', '.'))


def _get_text(root_or_el: ET.Element, xpath: str) -> str:
    """
    Retorna texto de um xpath (com namespace TISS),
    ou string vazia se não existir / sem texto.
    """
    el = root_or_el.find(xpath, ANS_NS)
    return (el.text or '').strip() if el is not None and el.text else ''


def _load_root(source: Union[str, Path, bytes, IO[bytes]]) -> ET.Element:
    """Aceita XML (str/bytes), caminho ou arquivo aberto."""
    if hasattr(source, 'read'):  # UploadedFile/BytesIO
        if hasattr(source, 'seek'):
            source.seek(0)
        return ET.parse(source).getroot()
    if isinstance(source, bytes):
        return ET.fromstring(source)
    if isinstance(source, str) and source.lstrip().startswith('<'):
        return ET.fromstring(source)
    return ET.parse(Path(source)).getroot()


def _get_numero_lote(root: ET.Element) -> str:
    numero = _get_text(root, './/ans:prestadorParaOperadora/ans:loteGuias/ans:numeroLote')
    if not numero:
        raise TissParsingError('numeroLote não encontrado no XML.')
    return numero


def _guias(root: ET.Element) -> List[ET.Element]:
    return root.findall('.//ans:prestadorParaOperadora/ans:loteGuias/ans:guiasTISS/ans:guiaResumoInternacao', ANS_NS)


# ----------------------------
# Hash do epílogo
# ----------------------------
def _hash_sem_epilogo(root: ET.Element) -> str:
    """
    Recalcula o hash: remove o epílogo e a indentação e
    serializa de forma compacta, como na geração.
    """
    copia = ET.fromstring(ET.tostring(root))
    for ep in copia.findall('ans:epilogo', ANS_NS):
        copia.remove(ep)
    for el in copia.iter():
        if el.text is not None and not el.text.strip():
            el.text = None
        if el.tail is not None and not el.tail.strip():
            el.tail = None
    conteudo = ET.tostring(copia, encoding='unicode')
    return hashlib.md5(conteudo.encode('utf-8')).hexdigest()


def verify_hash(source: Union[str, Path, bytes, IO[bytes]]) -> bool:
    """True se ans:epilogo/ans:hash confere com o conteúdo."""
    root = _load_root(source)
    informado = _get_text(root, 'ans:epilogo/ans:hash')
    return bool(informado) and informado.lower() == _hash_sem_epilogo(root)


# ----------------------------
# API pública
# ----------------------------
def read_tiss_resumo(source: Union[str, Path, bytes, IO[bytes]]) -> Dict:
    """
    Lê um XML TISS de resumo de internação e devolve o resumo do lote:
    numero_lote, qtde_guias, valor_total (soma de valorTotalGeral),
    hash informado e se ele confere.
    """
    root = _load_root(source)
    numero_lote = _get_numero_lote(root)
    guias = _guias(root)

    total = Decimal('0')
    for g in guias:
        total += _dec(_get_text(g, 'ans:valorTotal/ans:valorTotalGeral'))

    hash_informado = _get_text(root, 'ans:epilogo/ans:hash')
    return {
        'numero_lote': numero_lote,
        'tipo': 'RESUMO_INTERNACAO' if guias else 'DESCONHECIDO',
        'qtde_guias': len(guias),
        'valor_total': total,
        'versao_tiss': _get_text(root, 'ans:cabecalho/ans:Padrao'),
        'hash': hash_informado,
        'hash_confere': bool(hash_informado) and hash_informado.lower() == _hash_sem_epilogo(root),
        'parser_version': __version__,
    }


def audit_por_guia(source: Union[str, Path, bytes, IO[bytes]]) -> List[Dict]:
    """
    Uma linha por guia: numeroGuiaPrestador, beneficiário, carteira,
    período de faturamento, quantidade/valor unitário da diária e total.
    """
    root = _load_root(source)
    out: List[Dict] = []
    for g in _guias(root):
        proc = g.find('ans:procedimentosExecutados/ans:procedimentoExecutado', ANS_NS)
        out.append({
            'numeroGuiaPrestador': _get_text(g, 'ans:cabecalhoGuia/ans:numeroGuiaPrestador'),
            'nomeBeneficiario': _get_text(g, 'ans:dadosBeneficiario/ans:nomeBeneficiario'),
            'numeroCarteira': _get_text(g, 'ans:dadosBeneficiario/ans:numeroCarteira'),
            'cnpjContratado': _get_text(g, 'ans:dadosExecutante/ans:contratadoExecutante/ans:cnpjContratado'),
            'dataInicioFaturamento': _get_text(g, 'ans:dadosInternacao/ans:dataInicioFaturamento'),
            'dataFinalFaturamento': _get_text(g, 'ans:dadosInternacao/ans:dataFinalFaturamento'),
            'codigoProcedimento': _get_text(proc, 'ans:procedimento/ans:codigoProcedimento') if proc is not None else '',
            'quantidadeExecutada': _dec(_get_text(proc, 'ans:quantidadeExecutada')) if proc is not None else Decimal('0'),
            'valorUnitario': _dec(_get_text(proc, 'ans:valorUnitario')) if proc is not None else Decimal('0'),
            'valorTotalGeral': _dec(_get_text(g, 'ans:valorTotal/ans:valorTotalGeral')),
            'parser_version': __version__,
        })
    return out
