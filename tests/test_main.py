"""
Tests for the command-line interface.
"""
import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from zatca_einvoice.core.builder import DocumentBuilder
from zatca_einvoice.core.chain import content_hash
from zatca_einvoice.main import main

NO_LOG = ["--log-file", ""]


@pytest.fixture
def invoice_file(tmp_path, make_invoice):
    issued_at = datetime.now(timezone.utc) - timedelta(hours=1)
    invoice = make_invoice(issue_date=issued_at.date(),
                           issue_time=issued_at.time().replace(microsecond=0))
    path = tmp_path / "invoice.json"
    path.write_text(json.dumps(invoice.model_dump(mode="json")), encoding="utf-8")
    return path


class TestBuild:

    def test_build_to_file(self, tmp_path, invoice_file):
        out = tmp_path / "invoice.xml"

        assert main(["build", str(invoice_file), "-o", str(out)] + NO_LOG) == 0
        assert out.read_bytes().startswith(b"<?xml")

    def test_build_bad_previous_hash(self, invoice_file, caplog):
        assert main(["build", str(invoice_file), "--previous-hash", "b3RoZXI="] + NO_LOG) == 1

        assert "ChainBreakError" in caplog.text
        assert "field=previous_invoice_hash, expected=b3RoZXI=" in caplog.text

    def test_build_missing_file(self, tmp_path):
        assert main(["build", str(tmp_path / "absent.json")] + NO_LOG) == 1


class TestValidate:

    def test_valid(self, invoice_file, capsys):
        assert main(["validate", str(invoice_file)] + NO_LOG) == 0
        assert "COMPLIANT" in capsys.readouterr().out

    def test_concurrent(self, invoice_file, tmp_path, capsys):
        broken = tmp_path / "broken.json"
        broken.write_text("{", encoding="utf-8")

        code = main(["validate", str(invoice_file), str(broken), "--concurrent", "-w", "2"] + NO_LOG)

        assert code == 1
        assert "Non-Compliant:     1" in capsys.readouterr().out


class TestQR:

    def test_decode(self, simplified_invoice, capsys):
        qr_code = DocumentBuilder().build(simplified_invoice).qr_code

        assert main(["qr", "decode", qr_code] + NO_LOG) == 0

        out = capsys.readouterr().out
        assert "Test Company" in out
        assert "13.04" in out

    def test_decode_invalid(self):
        assert main(["qr", "decode", "!!"] + NO_LOG) == 1

    def test_from_document(self, tmp_path, simplified_invoice, capsys):
        built = DocumentBuilder().build(simplified_invoice)
        path = tmp_path / "invoice.xml"
        path.write_bytes(built.to_bytes())

        assert main(["qr", "invoice", str(path)] + NO_LOG) == 0
        assert built.qr_code in capsys.readouterr().out


class TestChain:

    def test_intact(self, tmp_path, make_invoice, capsys):
        builder = DocumentBuilder()
        first = make_invoice(id="A", uuid=uuid4())
        second = make_invoice(id="B", uuid=uuid4(), counter_value=2,
                              previous_invoice_hash=content_hash(first))
        (tmp_path / "a.xml").write_bytes(builder.render(first))
        (tmp_path / "b.xml").write_bytes(builder.render(second))

        assert main(["chain", str(tmp_path)] + NO_LOG) == 0
        assert "Chain intact" in capsys.readouterr().out

    def test_broken(self, tmp_path, make_invoice, capsys):
        builder = DocumentBuilder()
        (tmp_path / "a.xml").write_bytes(builder.render(make_invoice(id="A", uuid=uuid4())))
        (tmp_path / "b.xml").write_bytes(builder.render(make_invoice(id="B", uuid=uuid4(), counter_value=2)))

        assert main(["chain", str(tmp_path)] + NO_LOG) == 1
        assert "CHAIN_001" in capsys.readouterr().out

    def test_empty_directory(self, tmp_path):
        assert main(["chain", str(tmp_path)] + NO_LOG) == 1


def test_no_command():
    assert main([]) == 1
