"""
Testes da leitura do XML TISS gerado (resumo do lote, auditoria por guia e hash).
"""

import io
from decimal import Decimal

import pytest

from nfse_parser import parse_nfse
from tiss_builder import DadosManuais, build_tiss_document
from tiss_reader import TissParsingError, audit_por_guia, read_tiss_resumo, verify_hash


@pytest.fixture
def doc(nfse_xml, clock):
    manual = DadosManuais(codigo_prestador="4455", numero_carteira="123.456")
    return build_tiss_document(parse_nfse(nfse_xml), manual, clock=clock)


class TestReadTissResumo:
    def test_summary(self, doc):
        res = read_tiss_resumo(doc.xml)
        assert res['numero_lote'] == '1'
        assert res['tipo'] == 'RESUMO_INTERNACAO'
        assert res['qtde_guias'] == 1
        assert res['valor_total'] == Decimal('10500.00')
        assert res['versao_tiss'] == '4.01.00'
        assert res['hash'] == doc.hash
        assert res['hash_confere'] is True

    def test_accepts_bytes_file_and_path(self, doc, tmp_path):
        path = tmp_path / "tiss.xml"
        path.write_bytes(doc.xml.encode('utf-8'))
        for source in (doc.xml.encode('utf-8'), io.BytesIO(doc.xml.encode('utf-8')), path, str(path)):
            assert read_tiss_resumo(source)['valor_total'] == Decimal('10500.00')

    def test_missing_lote_raises(self):
        xml = '<ans:mensagemTISS xmlns:ans="http://www.ans.gov.br/padroes/tiss/schemas"/>'
        with pytest.raises(TissParsingError):
            read_tiss_resumo(xml)


class TestAuditPorGuia:
    def test_one_row_per_guide(self, doc):
        linhas = audit_por_guia(doc.xml)
        assert len(linhas) == 1
        linha = linhas[0]
        assert linha['numeroGuiaPrestador'] == '2024123'
        assert linha['nomeBeneficiario'] == 'JOAO DA SILVA'
        assert linha['numeroCarteira'] == '123456'
        assert linha['dataInicioFaturamento'] == '2024-12-01'
        assert linha['quantidadeExecutada'] == Decimal('15')
        assert linha['valorUnitario'] == Decimal('700.00')
        assert linha['valorTotalGeral'] == Decimal('10500.00')


class TestVerifyHash:
    def test_generated_document_verifies(self, doc):
        assert verify_hash(doc.xml) is True

    def test_tampered_content_fails(self, doc):
        assert verify_hash(doc.xml.replace('JOAO DA SILVA', 'JOAO DA SILVA JR')) is False

    def test_tampered_hash_fails(self, doc):
        assert verify_hash(doc.xml.replace(doc.hash, '0' * 32)) is False

    def test_missing_epilogue_fails(self):
        xml = '<ans:mensagemTISS xmlns:ans="http://www.ans.gov.br/padroes/tiss/schemas"/>'
        assert verify_hash(xml) is False
