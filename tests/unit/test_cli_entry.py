import pytest
from click.testing import CliRunner

from bamcleave import cli_entry
from bamcleave.informatics.bam_functions import CleaveError
from bamcleave.informatics.bucket_registry import BucketRegistry
from bamcleave.informatics.chimera_stats import CleaveStatistics
from bamcleave.informatics.cleave_bam import CleavePhase, CleaveResult


@pytest.fixture
def captured(monkeypatch):
    calls = []

    def fake_cleave(cfg):
        calls.append(cfg)
        stats = CleaveStatistics()
        stats[1].mapped_pairs = 2
        registry = BucketRegistry() if cfg.cell_mode else None
        return CleaveResult(phase=CleavePhase.DONE, statistics=stats, registry=registry, commit_records=2)

    monkeypatch.setattr(cli_entry, "cleave_bam", fake_cleave)
    monkeypatch.setattr(cli_entry, "setup_logging", lambda **kwargs: None)
    return calls


def test_split_builds_top_k_config(tmp_path, captured):
    bam = tmp_path / "in.bam"
    bam.write_text("stub")
    result = CliRunner().invoke(
        cli_entry.cli,
        ["split", "-b", str(bam), "-p", "mm10_", "-c", "25", "-t", "CB", "--no-index"],
    )
    assert result.exit_code == 0, result.output
    cfg = captured[0]
    assert cfg.prefix == "mm10_"
    assert cfg.cell_mode
    assert cfg.max_cells == 25
    assert cfg.tag_id == "CB"
    assert cfg.index_outputs is False
    assert "First Genome: 2 mapped pairs" in result.output
    assert "Cells: 0 with their own file" in result.output


def test_split_with_groups(tmp_path, captured):
    bam = tmp_path / "in.bam"
    bam.write_text("stub")
    groups = tmp_path / "groups.txt"
    groups.write_text("AAAC-1\n")
    result = CliRunner().invoke(
        cli_entry.cli,
        ["split", "-b", str(bam), "-g", str(groups), "--headers-only-groups"],
    )
    assert result.exit_code == 0, result.output
    cfg = captured[0]
    assert cfg.admission_mode == "group"
    assert cfg.materialize_groups is False
    # group runs do not count reads, so no genome lines are shown
    assert "Groups: 0 group files" in result.output
    assert "First Genome" not in result.output
    assert "Unmapped reads" not in result.output


def test_split_with_cell_list(tmp_path, captured):
    bam = tmp_path / "in.bam"
    bam.write_text("stub")
    result = CliRunner().invoke(cli_entry.cli, ["split", "-b", str(bam), "-c", str(tmp_path / "cells.txt")])
    # the list file is checked before the run starts
    assert result.exit_code != 0
    assert "cell_list_path does not exist" in result.output
    assert captured == []


def test_split_missing_input(tmp_path, captured):
    result = CliRunner().invoke(cli_entry.cli, ["split", "-b", str(tmp_path / "missing.bam")])
    assert result.exit_code != 0
    assert "input_bam does not exist" in result.output


def test_split_reports_fatal_errors(tmp_path, monkeypatch):
    bam = tmp_path / "in.bam"
    bam.write_text("stub")

    def failing(cfg):
        raise CleaveError("Failed to open second bam file rest.bam")

    monkeypatch.setattr(cli_entry, "cleave_bam", failing)
    monkeypatch.setattr(cli_entry, "setup_logging", lambda **kwargs: None)
    result = CliRunner().invoke(cli_entry.cli, ["split", "-b", str(bam)])
    assert result.exit_code == 1
    assert "Failed to open second bam file" in result.output


def test_run_from_config_csv(tmp_path, captured):
    bam = tmp_path / "in.bam"
    bam.write_text("stub")
    config = tmp_path / "cleave.csv"
    config.write_text(f"variable,value,type\ninput_bam,{bam},path\nprefix,hg_,string\nname_stop_chars,:,string\n")
    result = CliRunner().invoke(cli_entry.cli, ["run", str(config)])
    assert result.exit_code == 0, result.output
    cfg = captured[0]
    assert cfg.prefix == "hg_"
    assert cfg.name_stop_chars == ":"
    assert cfg.config_source == str(config)


def test_show_config(tmp_path):
    config = tmp_path / "cleave.csv"
    config.write_text("variable,value\ninput_bam,in.bam\ncells,10\n")
    result = CliRunner().invoke(cli_entry.cli, ["show-config", str(config)])
    assert result.exit_code == 0, result.output
    assert "input_bam: in.bam" in result.output
    assert "max_cells: 10" in result.output


def test_run_rejects_malformed_config(tmp_path, captured):
    config = tmp_path / "cleave.csv"
    config.write_text("variable,value,type\ninput_bam,in.bam,path\nmax_cells,many,int\n")
    result = CliRunner().invoke(cli_entry.cli, ["run", str(config)])
    assert result.exit_code == 1
    assert "max_cells must be an integer" in result.output
    assert captured == []
