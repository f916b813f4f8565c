from __future__ import annotations

import signal
import textwrap

import pandas as pd
import pytest

from placeaccess.batching import run_accessibility_cli
from placeaccess.batching.run_accessibility_cli import main, parse_args
from placeaccess.batching.sinks import CsvPartitionSink


def _write_inputs(tmp_path):
    costs = tmp_path / "costs.csv"
    costs.write_text(
        textwrap.dedent(
            """
            origin_id,destination_id,travel_cost
            100,900,5
            100,901,15
            101,900,25
            101,999,3
            102,901,8
            """
        ).strip(),
        encoding="utf-8",
    )
    opportunities = tmp_path / "jobs.csv"
    opportunities.write_text("destination_id,jobs\n900,100\n901,50\n", encoding="utf-8")
    measures = tmp_path / "measures.yaml"
    measures.write_text(
        textwrap.dedent(
            """
            presets: [CUMR10]
            measures:
              - family: cumulative_linear
                cutoff: 20
            """
        ).strip(),
        encoding="utf-8",
    )
    return costs, opportunities, measures


def test_parse_args_defaults():
    args = parse_args(["--costs", "c.csv", "--opportunities", "o.csv", "--output-dir", "out"])
    assert args.batch_size == 1000
    assert args.num_workers == 1
    assert args.start_batch == 0
    assert args.measures is None
    assert args.opportunity_column == "opportunities"


def test_cli_writes_accessibility_and_failures(tmp_path):
    costs, opportunities, measures = _write_inputs(tmp_path)
    output_dir = tmp_path / "out"

    main(
        [
            "--costs", str(costs),
            "--opportunities", str(opportunities),
            "--opportunity-column", "jobs",
            "--measures", str(measures),
            "--output-dir", str(output_dir),
            "--batch-size", "2",
            "--chunksize", "2",
            "--checkpoint", str(tmp_path / "checkpoint.json"),
        ]
    )

    table = pd.read_csv(output_dir / "accessibility.csv", dtype={"origin_id": str}).set_index("origin_id")
    assert list(table.columns) == ["CUMR10", "CUML20"]
    assert sorted(table.index) == ["100", "102"]
    assert table.loc["100", "CUMR10"] == pytest.approx(100.0)
    assert table.loc["100", "CUML20"] == pytest.approx(87.5)
    assert table.loc["102", "CUML20"] == pytest.approx(50 * 0.6)

    failures = pd.read_csv(output_dir / "failures.csv", dtype={"origin_id": str})
    assert failures["origin_id"].tolist() == ["101"]
    assert "999" in failures.loc[0, "reason"]
    assert sorted((output_dir / "parts").glob("part-*.csv")) != []


def test_cli_exits_on_invalid_measure_config(tmp_path):
    costs, opportunities, _ = _write_inputs(tmp_path)
    bad = tmp_path / "bad.yaml"
    bad.write_text("measures:\n  - family: negative_exponential\n    beta: -1\n", encoding="utf-8")

    with pytest.raises(SystemExit):
        main(
            [
                "--costs", str(costs),
                "--opportunities", str(opportunities),
                "--measures", str(bad),
                "--output-dir", str(tmp_path / "out"),
            ]
        )


def _cli_args(costs, opportunities, measures, output_dir, *extra):
    return [
        "--costs", str(costs),
        "--opportunities", str(opportunities),
        "--opportunity-column", "jobs",
        "--measures", str(measures),
        "--output-dir", str(output_dir),
        *extra,
    ]


def test_rerun_into_same_output_dir_replaces_previous_results(tmp_path):
    costs, opportunities, measures = _write_inputs(tmp_path)
    output_dir = tmp_path / "out"
    main(_cli_args(costs, opportunities, measures, output_dir, "--batch-size", "1"))

    opportunities.write_text("destination_id,jobs\n900,1000\n901,500\n999,1\n", encoding="utf-8")
    main(_cli_args(costs, opportunities, measures, output_dir, "--batch-size", "3"))

    table = pd.read_csv(output_dir / "accessibility.csv", dtype={"origin_id": str}).set_index("origin_id")
    assert sorted(table.index) == ["100", "101", "102"]
    assert table.loc["100", "CUMR10"] == pytest.approx(1000.0)
    assert table.loc["101", "CUMR10"] == pytest.approx(1.0)
    assert table.loc["102", "CUML20"] == pytest.approx(500 * 0.6)
    assert sorted(p.name for p in (output_dir / "parts").glob("part-*.csv")) == ["part-000000.csv"]
    failures = pd.read_csv(output_dir / "failures.csv")
    assert failures.empty


class FailingSecondBatchSink(CsvPartitionSink):
    def write_batch(self, batch_index, results):
        if batch_index >= 1:
            raise OSError("disk full")
        super().write_batch(batch_index, results)


def test_halted_run_still_writes_failure_log(tmp_path, monkeypatch):
    monkeypatch.setattr(run_accessibility_cli, "CsvPartitionSink", FailingSecondBatchSink)
    costs, opportunities, measures = _write_inputs(tmp_path)
    output_dir = tmp_path / "out"

    with pytest.raises(SystemExit) as excinfo:
        main(_cli_args(costs, opportunities, measures, output_dir, "--batch-size", "2"))

    assert "--start-batch 1" in str(excinfo.value.code)
    failures = pd.read_csv(output_dir / "failures.csv", dtype={"origin_id": str})
    assert failures["origin_id"].tolist() == ["101"]
    assert sorted(p.name for p in (output_dir / "parts").glob("part-*.csv")) == ["part-000000.csv"]


class InterruptedAfterFirstBatchSink(CsvPartitionSink):
    def write_batch(self, batch_index, results):
        super().write_batch(batch_index, results)
        if batch_index == 0:
            signal.raise_signal(signal.SIGINT)


def test_interrupt_finishes_current_batch_and_keeps_outputs(tmp_path, monkeypatch):
    monkeypatch.setattr(run_accessibility_cli, "CsvPartitionSink", InterruptedAfterFirstBatchSink)
    costs, opportunities, measures = _write_inputs(tmp_path)
    output_dir = tmp_path / "out"
    handler_before = signal.getsignal(signal.SIGINT)

    with pytest.raises(SystemExit) as excinfo:
        main(_cli_args(costs, opportunities, measures, output_dir, "--batch-size", "2"))

    assert excinfo.value.code == 130
    assert signal.getsignal(signal.SIGINT) is handler_before
    table = pd.read_csv(output_dir / "accessibility.csv", dtype={"origin_id": str})
    assert table["origin_id"].tolist() == ["100"]
    failures = pd.read_csv(output_dir / "failures.csv", dtype={"origin_id": str})
    assert failures["origin_id"].tolist() == ["101"]
