"""Test fixtures and utilities."""

from decimal import Decimal
from pathlib import Path

import pytest

from bankrecon.state_store import StateStore

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"

BANK_IBAN = "RS35260005601001611379"
BANK_ACCOUNT_NUMBER = "260005601001611379"

# Semicolon-delimited export with decimal commas, one unusable row
SAMPLE_CSV = """Date;Description;Amount;Partner;Reference
15.01.2026;Payment for INV-2026-0042;1.000,00;Acme d.o.o.;INV-2026-0042
16.01.2026;Telekom bill;-250,00;Telekom Srbija;SUP-77
bad-date;Broken row;12,00;Nobody;X-1
"""

SAMPLE_CAMT053 = """<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.02">
  <BkToCstmrStmt>
    <GrpHdr>
      <MsgId>MSG-20260115</MsgId>
      <CreDtTm>2026-01-15T18:00:00</CreDtTm>
    </GrpHdr>
    <Stmt>
      <Id>STMT-2026-012</Id>
      <ElctrncSeqNb>12</ElctrncSeqNb>
      <FrToDt>
        <FrDtTm>2026-01-15T00:00:00</FrDtTm>
        <ToDtTm>2026-01-15T23:59:59</ToDtTm>
      </FrToDt>
      <Acct>
        <Id><IBAN>RS35260005601001611379</IBAN></Id>
        <Ccy>RSD</Ccy>
      </Acct>
      <Bal>
        <Tp><CdOrPrtry><Cd>OPBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="RSD">5000.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2026-01-14</Dt></Dt>
      </Bal>
      <Bal>
        <Tp><CdOrPrtry><Cd>CLBD</Cd></CdOrPrtry></Tp>
        <Amt Ccy="RSD">5745.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <Dt><Dt>2026-01-15</Dt></Dt>
      </Bal>
      <Ntry>
        <Amt Ccy="RSD">1000.00</Amt>
        <CdtDbtInd>CRDT</CdtDbtInd>
        <BookgDt><Dt>2026-01-15</Dt></BookgDt>
        <ValDt><Dt>2026-01-16</Dt></ValDt>
        <BkTxCd><Domn><Cd>PMNT</Cd><Fmly><Cd>RCDT</Cd><SubFmlyCd>ESCT</SubFmlyCd></Fmly></Domn></BkTxCd>
        <NtryDtls>
          <TxDtls>
            <Refs><EndToEndId>INV-2026-0042</EndToEndId></Refs>
            <RltdPties>
              <Dbtr><Nm>Acme d.o.o.</Nm></Dbtr>
              <DbtrAcct><Id><IBAN>RS35160005080006054321</IBAN></Id></DbtrAcct>
            </RltdPties>
            <Purp><Cd>SUPP</Cd></Purp>
            <RmtInf><Ustrd>Payment INV-2026-0042</Ustrd></RmtInf>
          </TxDtls>
        </NtryDtls>
      </Ntry>
      <Ntry>
        <Amt Ccy="RSD">250.00</Amt>
        <CdtDbtInd>DBIT</CdtDbtInd>
        <BookgDt><Dt>2026-01-15</Dt></BookgDt>
        <NtryDtls>
          <TxDtls>
            <Refs><EndToEndId>NOTPROVIDED</EndToEndId></Refs>
            <RltdPties>
              <Cdtr><Nm>Telekom Srbija</Nm></Cdtr>
              <CdtrAcct><Id><IBAN>RS35205000000000123456</IBAN></Id></CdtrAcct>
            </RltdPties>
            <RmtInf>
              <Strd><CdtrRefInf><Ref>SUP-77</Ref></CdtrRefInf></Strd>
            </RmtInf>
          </TxDtls>
        </NtryDtls>
      </Ntry>
      <Ntry>
        <Amt Ccy="RSD">5.00</Amt>
        <CdtDbtInd>DBIT</CdtDbtInd>
        <BookgDt><Dt>2026-01-15</Dt></BookgDt>
        <BkTxCd><Domn><Cd>ACMT</Cd><Fmly><Cd>MDOP</Cd><SubFmlyCd>CHRG</SubFmlyCd></Fmly></Domn></BkTxCd>
      </Ntry>
    </Stmt>
  </BkToCstmrStmt>
</Document>
"""

SAMPLE_NBS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<DnevniIzvod>
  <Zaglavlje>
    <BrojRacuna>260-0056010016113-79</BrojRacuna>
    <BrojIzvoda>7</BrojIzvoda>
    <PrethodnoStanje>10.000,00</PrethodnoStanje>
    <NovoStanje>10.700,00</NovoStanje>
  </Zaglavlje>
  <Stavke>
    <Stavka>
      <Datum>15.01.2026</Datum>
      <DatumValute>15.01.2026</DatumValute>
      <Iznos>1.000,00</Iznos>
      <Smer>1</Smer>
      <Nalogodavac>Acme d.o.o.</Nalogodavac>
      <PozivNaBroj>INV-2026-0042</PozivNaBroj>
      <Svrha>Placanje fakture</Svrha>
    </Stavka>
    <Stavka>
      <Datum>15.01.2026</Datum>
      <Iznos>300,00</Iznos>
      <Smer>2</Smer>
      <Nalogodavac>EPS Snabdevanje</Nalogodavac>
      <Svrha>Struja decembar</Svrha>
    </Stavka>
    <Stavka>
      <Iznos>10,00</Iznos>
      <Smer>2</Smer>
    </Stavka>
  </Stavke>
</DnevniIzvod>
"""

SAMPLE_MT940 = """:20:STMT20260115
:25:RS35260005601001611379
:28C:00012/001
:60F:C260114RSD5000,00
:61:2601150115C1000,00NTRFINV-2026-0042//BANKREF1
:86:Acme d.o.o. payment INV-2026-0042
:61:2601150115D250,00NTRFNONREF
:86:Telekom Srbija
:62F:C260115RSD5750,00
-
"""


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with all migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def seeded(store) -> dict:
    """Bank account, one open invoice and one open supplier invoice for TENANT."""
    bank_account_id = store.create_bank_account(
        TENANT,
        bank_name="Banca Intesa",
        account_number=BANK_ACCOUNT_NUMBER,
        iban=BANK_IBAN,
        currency="RSD",
        gl_account_code="2410",
    )
    invoice_id = store.create_invoice(
        TENANT,
        invoice_number="INV-2026-0042",
        total=Decimal("1000.00"),
        partner_name="Acme d.o.o.",
        due_date="2026-01-14",
    )
    supplier_invoice_id = store.create_supplier_invoice(
        TENANT,
        invoice_number="SUP-77",
        total=Decimal("250.00"),
        supplier_name="Telekom Srbija",
        due_date="2026-01-16",
    )
    return {
        "bank_account_id": bank_account_id,
        "invoice_id": invoice_id,
        "supplier_invoice_id": supplier_invoice_id,
    }


@pytest.fixture
def sample_csv() -> str:
    return SAMPLE_CSV


@pytest.fixture
def sample_camt053() -> str:
    return SAMPLE_CAMT053


@pytest.fixture
def sample_nbs_xml() -> str:
    return SAMPLE_NBS_XML


@pytest.fixture
def sample_mt940() -> str:
    return SAMPLE_MT940


@pytest.fixture
def csv_statement(store, seeded) -> int:
    """Statement imported from SAMPLE_CSV into the seeded bank account."""
    from bankrecon.ingestion import FileIngestor

    result = FileIngestor(store).import_csv_statement(
        TENANT,
        seeded["bank_account_id"],
        SAMPLE_CSV,
        statement_date="2026-01-16",
        statement_number="CSV-1",
    )
    assert result.success
    return result.statement_id
