import csv
import json
import threading

import pandas as pd
import pytest

from trisplit.errors import InputError, OutputWriteError, RunCancelled
from trisplit.readers import InputReader
from trisplit.writers import TabularWriter


def test_reads_quoted_csv_as_strings(tmp_path):
    path = tmp_path / "extract.csv"
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, quoting=csv.QUOTE_ALL)
        writer.writerow(["First Name", " Zip "])
        writer.writerow(["  Ann ", "02134"])
        writer.writerow(["NA", ""])

    data = InputReader().read(str(path))
    assert data.headers == ["First Name", "Zip"]
    assert data.rows == [
        {"First Name": "Ann", "Zip": "02134"},
        {"First Name": "NA", "Zip": ""},
    ]
    assert data.total_rows == 2
    assert data.source_file == str(path)


def test_reads_tsv_and_sniffs_semicolons(tmp_path):
    tsv = tmp_path / "extract.tsv"
    tsv.write_text("Name\tCity\nAnn\tWaco\n", encoding="utf-8")
    assert InputReader().read(str(tsv)).rows == [{"Name": "Ann", "City": "Waco"}]

    txt = tmp_path / "extract.txt"
    txt.write_text("Name;City\nAnn;Waco\nBo;Tyler\n", encoding="utf-8")
    data = InputReader().read(str(txt))
    assert data.headers == ["Name", "City"]
    assert data.rows[1] == {"Name": "Bo", "City": "Tyler"}


def test_reads_excel(tmp_path):
    path = tmp_path / "extract.xlsx"
    pd.DataFrame({"Name": ["Ann"], "Zip": ["02134"]}).to_excel(path, index=False, engine="openpyxl")
    data = InputReader().read(str(path))
    assert data.rows == [{"Name": "Ann", "Zip": "02134"}]


def test_reader_errors(tmp_path):
    with pytest.raises(InputError, match="not found"):
        InputReader().read(str(tmp_path / "missing.csv"))

    unsupported = tmp_path / "extract.pdf"
    unsupported.write_text("x", encoding="utf-8")
    with pytest.raises(InputError, match="Unsupported"):
        InputReader().read(str(unsupported))

    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(InputError):
        InputReader().read(str(empty))


def test_writer_skips_empty_sets(tmp_path):
    path = tmp_path / "contacts.csv"
    assert TabularWriter().write(str(path), [], ["Import ID"], "csv") == ""
    assert not path.exists()


def test_writer_quotes_every_csv_field(tmp_path):
    path = tmp_path / "contacts.csv"
    rows = [{"Import ID": "1", "Postal Code": "02134", "Extra": "ignored"}]
    written = TabularWriter().write(str(path), rows, ["Import ID", "Postal Code"], "csv")
    assert written == str(path)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == ['"Import ID","Postal Code"', '"1","02134"']


def test_writer_json_and_excel(tmp_path):
    rows = [{"Import ID": "1", "City": "Waco"}, {"Import ID": "2"}]
    json_path = TabularWriter().write(str(tmp_path / "out.json"), rows, ["Import ID", "City"], "json")
    with open(json_path, encoding="utf-8") as handle:
        assert json.load(handle) == [
            {"Import ID": "1", "City": "Waco"},
            {"Import ID": "2", "City": ""},
        ]

    xlsx_path = TabularWriter().write(
        str(tmp_path / "out.xlsx"), rows, ["Import ID", "City"], "excel", sheet_name="Phones"
    )
    frame = pd.read_excel(xlsx_path, sheet_name="Phones", dtype=str, keep_default_na=False)
    assert frame["City"].tolist() == ["Waco", ""]


def test_writer_honours_cancellation(tmp_path):
    cancel = threading.Event()
    cancel.set()
    path = tmp_path / "contacts.csv"
    with pytest.raises(RunCancelled):
        TabularWriter().write(str(path), [{"A": "1"}], ["A"], "csv", cancel=cancel)
    assert not path.exists()


def test_writer_wraps_os_errors(tmp_path):
    target = tmp_path / "missing-dir" / "contacts.csv"
    with pytest.raises(OutputWriteError) as excinfo:
        TabularWriter().write(str(target), [{"A": "1"}], ["A"], "csv")
    assert excinfo.value.path == str(target)
