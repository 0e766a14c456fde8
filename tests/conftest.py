"""
Fixtures compartilhadas: NFS-e de exemplo (com e sem prefixo de namespace),
relógio fixo e configurações isoladas do ambiente.
"""

import re
from datetime import datetime

import pytest

from tiss_settings import Settings

ABRASF_NS = "http://www.abrasf.org.br/nfse.xsd"

DISCRIMINACAO = (
    "INTERNACAO HOSPITALAR\n"
    "Paciente: JOAO DA SILVA\n"
    "15 DIARIAS - VALOR DA DIARIA R$ 700,00\n"
    "COMPETENCIA DEZEMBRO DE 2024"
)

NFSE_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<CompNfse xmlns="{ABRASF_NS}">
  <Nfse versao="2.02">
    <InfNfse Id="nfse1">
      <Numero>2024123</Numero>
      <CodigoVerificacao>ABC123</CodigoVerificacao>
      <DataEmissao>2025-01-05T10:30:00</DataEmissao>
      <ValoresNfse>
        <BaseCalculo>10500.00</BaseCalculo>
        <ValorLiquidoNfse>10500.00</ValorLiquidoNfse>
      </ValoresNfse>
      <PrestadorServico>
        <IdentificacaoPrestador>
          <CpfCnpj><Cnpj>12345678000199</Cnpj></CpfCnpj>
        </IdentificacaoPrestador>
        <RazaoSocial>HOSPITAL SAO LUCAS LTDA</RazaoSocial>
        <Endereco><Numero>100</Numero></Endereco>
      </PrestadorServico>
      <DeclaracaoPrestacaoServico>
        <InfDeclaracaoPrestacaoServico>
          <Servico>
            <Valores><ValorServicos>10500.00</ValorServicos></Valores>
            <Discriminacao>{DISCRIMINACAO}</Discriminacao>
          </Servico>
          <Prestador>
            <CpfCnpj><Cnpj>12345678000199</Cnpj></CpfCnpj>
          </Prestador>
          <Tomador>
            <IdentificacaoTomador>
              <CpfCnpj><Cnpj>98765432000155</Cnpj></CpfCnpj>
            </IdentificacaoTomador>
            <RazaoSocial>OPERADORA SAUDE SA</RazaoSocial>
          </Tomador>
        </InfDeclaracaoPrestacaoServico>
      </DeclaracaoPrestacaoServico>
    </InfNfse>
  </Nfse>
</CompNfse>
"""


def with_prefix(xml: str, prefix: str, declare: bool = True) -> str:
    """Prefixa todas as tags; sem declaração, o prefixo fica não ligado."""
    out = re.sub(r"<(/?)([A-Za-z])", rf"<\1{prefix}:\2", xml)
    if declare:
        return out.replace(' xmlns="', f' xmlns:{prefix}="')
    return out.replace(f' xmlns="{ABRASF_NS}"', "")


@pytest.fixture
def nfse_xml():
    return NFSE_XML


@pytest.fixture
def fixed_now():
    return datetime(2025, 1, 10, 8, 30, 0)


@pytest.fixture
def clock(fixed_now):
    return lambda: fixed_now


@pytest.fixture
def settings():
    return Settings(_env_file=None)
