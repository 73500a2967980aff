"""Command-line entry point."""

import json

import run_ledger


def test_json_output(tmp_path, capsys, ledger_document):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_document), encoding="utf-8")

    code = run_ledger.main(["--ledger", str(path), "--as-of", "2024-12-31", "--json"])

    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["asOf"] == "2024-12-31"
    assert len(payload["holdings"]) == 2


def test_table_output_with_merge_and_rebalance(tmp_path, capsys, ledger_document):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_document), encoding="utf-8")

    code = run_ledger.main(["--ledger", str(path), "--as-of", "2024-12-31", "--merge", "--rebalance"])

    out = capsys.readouterr().out
    assert code == 0
    assert "Rebalance" in out


def test_invalid_ledger_exit_code(tmp_path, capsys, ledger_document):
    ledger_document["accounts"][0]["currency"] = "EUR"
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_document), encoding="utf-8")

    assert run_ledger.main(["--ledger", str(path)]) == 2
    assert "unknown currency" in capsys.readouterr().err


def test_missing_file_exit_code(tmp_path):
    assert run_ledger.main(["--ledger", str(tmp_path / "nope.json")]) == 2


def test_no_arguments_prints_help(capsys):
    assert run_ledger.main([]) == 1
    assert "--ledger" in capsys.readouterr().out


def test_return_data_mode(tmp_path, ledger_document):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_document), encoding="utf-8")

    result = run_ledger.run_ledger(str(path), as_of="2024-12-31", return_data=True)

    assert result.summary.reporting_currency == "TWD"
