import io
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import pytest
from msoffcrypto.exceptions import InvalidKeyError
from openpyxl import Workbook

from packages.ingestion_engine.errors import EmptyFile, UnreadableFile
from packages.ingestion_engine.models import DateValue, Empty, Number, Text
from packages.ingestion_engine.reader import (
    _OLE2_MAGIC,
    FORMAT_OLE2,
    FORMAT_TEXT,
    FORMAT_XLSX,
    detect_format,
    read_grid,
    to_cell,
)

# OLE2 magic prefix to simulate encrypted file content
_FAKE_ENCRYPTED = _OLE2_MAGIC + b"fake_encrypted_payload"


def make_xlsx(rows) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def statement_xlsx():
    return make_xlsx(
        [
            ["Account Holder", "J. Doe"],
            [],
            ["Date", "Details", "Debit", "Credit", "Balance"],
            [datetime(2023, 4, 28), "TEST TRANSACTION", 100.0, None, 2000.0],
            ["29/04/2023", "SALARY", None, 5000.0, 7000.0],
        ]
    )


class TestDetectFormat:
    def test_magic_bytes_win_over_extension(self):
        assert detect_format(b"PK\x03\x04rest", "statement.csv") == FORMAT_XLSX
        assert detect_format(_FAKE_ENCRYPTED, "statement.csv") == FORMAT_OLE2

    def test_extension_fallback(self):
        assert detect_format(b"abc", "statement.xlsx") == FORMAT_XLSX
        assert detect_format(b"abc", "statement.XLS") == FORMAT_OLE2

    def test_defaults_to_text(self):
        assert detect_format(b"Date,Amount\n", None) == FORMAT_TEXT


class TestToCell:
    def test_coercions(self):
        assert to_cell(None) == Empty()
        assert to_cell(float("nan")) == Empty()
        assert to_cell("  ") == Empty()
        assert to_cell(12) == Number(12.0)
        assert to_cell(" Coffee ") == Text("Coffee")
        assert to_cell(datetime(2024, 1, 2, 13, 0)) == DateValue(date(2024, 1, 2))
        assert to_cell(True) == Text("TRUE")


class TestReadWorkbook:
    def test_first_sheet_is_read(self, statement_xlsx):
        grid = read_grid(statement_xlsx, "statement.xlsx")

        # The blank row is dropped
        assert len(grid) == 4
        assert grid.cell(1, 0) == Text("Date")
        assert grid.cell(2, 0) == DateValue(date(2023, 4, 28))
        assert grid.cell(2, 2) == Number(100.0)
        assert grid.cell(2, 3) == Empty()
        assert grid.cell(3, 0) == Text("29/04/2023")

    def test_corrupt_workbook(self):
        with pytest.raises(UnreadableFile):
            read_grid(b"PK\x03\x04not really a zip", "statement.xlsx")

    def test_workbook_without_rows(self):
        with pytest.raises(EmptyFile):
            read_grid(make_xlsx([]), "empty.xlsx")


class TestEncryptedWorkbook:
    @patch("packages.ingestion_engine.reader.msoffcrypto")
    def test_password_required(self, mock_msoffcrypto):
        mock_file = MagicMock()
        mock_file.is_encrypted.return_value = True
        mock_msoffcrypto.OfficeFile.return_value = mock_file

        with pytest.raises(UnreadableFile, match="Password required"):
            read_grid(_FAKE_ENCRYPTED, "locked.xlsx")

    @patch("packages.ingestion_engine.reader.msoffcrypto")
    def test_decrypts_with_password(self, mock_msoffcrypto, statement_xlsx):
        mock_file = MagicMock()
        mock_file.is_encrypted.return_value = True
        mock_file.decrypt.side_effect = lambda out: out.write(statement_xlsx)
        mock_msoffcrypto.OfficeFile.return_value = mock_file

        grid = read_grid(_FAKE_ENCRYPTED, "locked.xlsx", password="secret")

        mock_file.load_key.assert_called_with(password="secret")
        assert grid.cell(1, 1) == Text("Details")

    @patch("packages.ingestion_engine.reader.msoffcrypto")
    def test_wrong_password(self, mock_msoffcrypto):
        mock_file = MagicMock()
        mock_file.is_encrypted.return_value = True
        mock_file.load_key.side_effect = InvalidKeyError("bad key")
        mock_msoffcrypto.OfficeFile.return_value = mock_file

        with pytest.raises(UnreadableFile, match="Invalid password"):
            read_grid(_FAKE_ENCRYPTED, "locked.xlsx", password="wrong")

    def test_garbage_ole2_container(self):
        with pytest.raises(UnreadableFile):
            read_grid(_FAKE_ENCRYPTED, "statement.xls")


class TestReadDelimited:
    def test_comma_csv(self):
        content = b"Date,Description,Amount\n2024-01-15,Coffee,4.50\n"
        grid = read_grid(content, "statement.csv")

        assert len(grid) == 2
        assert grid.row(1) == (Text("2024-01-15"), Text("Coffee"), Text("4.50"))

    def test_semicolon_delimiter_is_sniffed(self):
        content = b"Date;Description;Amount\n15.01.2024;Coffee;4,50\n16.01.2024;Lunch;12,00\n"
        grid = read_grid(content, "statement.csv")

        assert grid.row(1) == (Text("15.01.2024"), Text("Coffee"), Text("4,50"))

    def test_tab_separated(self):
        content = b"Date\tAmount\n2024-01-15\t4.50\n"
        grid = read_grid(content, "statement.tsv")

        assert grid.cell(1, 1) == Text("4.50")

    def test_ragged_rows_are_tolerated(self):
        content = b"Statement for January\nDate,Description,Amount\n2024-01-15,Coffee,4.50\n"
        grid = read_grid(content, "statement.csv")

        assert grid.row(0) == (Text("Statement for January"),)
        assert grid.cell(0, 2) == Empty()
        assert grid.cell(2, 2) == Text("4.50")

    def test_blank_lines_dropped(self):
        content = b"Date,Amount\n\n2024-01-15,4.50\n,\n"
        grid = read_grid(content, "statement.csv")

        assert len(grid) == 2

    def test_cp1252_fallback(self):
        content = "Date,Description,Amount\n2024-01-15,Café,4.50\n".encode("cp1252")
        grid = read_grid(content, "statement.csv")

        assert grid.cell(1, 1) == Text("Café")

    def test_utf8_bom_is_stripped(self):
        content = "Date,Amount\n2024-01-15,4.50\n".encode("utf-8-sig")
        grid = read_grid(content)

        assert grid.cell(0, 0) == Text("Date")

    def test_empty_upload(self):
        with pytest.raises(EmptyFile):
            read_grid(b"", "statement.csv")

    def test_whitespace_only_upload(self):
        with pytest.raises(EmptyFile):
            read_grid(b"\n \n", "statement.csv")

    def test_binary_garbage(self):
        with pytest.raises(UnreadableFile):
            read_grid(b"\x00\x01\x02\x03binary", "statement.csv")
