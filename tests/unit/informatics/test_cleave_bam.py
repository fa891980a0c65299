import pytest

from bamcleave.config import CleaveConfig
from bamcleave.informatics.bam_functions import CleaveError
from bamcleave.informatics.bucket_registry import BucketState
from bamcleave.informatics.cleave_bam import CleavePhase, cleave_bam, extract_bucket_key

from tests.unit.informatics.cleave_fakes import FakeOpener, FakeRead, FakeReader


def _config(tmp_path, **kwargs):
    defaults = dict(
        input_bam=str(tmp_path / "sample.bam"),
        output_root=str(tmp_path / "out" / "sample"),
        index_outputs=False,
    )
    defaults.update(kwargs)
    return CleaveConfig(**defaults)


def _run(cfg, reader, opener=None):
    opener = opener or FakeOpener()
    result = cleave_bam(cfg, opener=opener, reader_factory=lambda path: reader)
    return result, opener


def _cell_reads():
    reads = []
    for i in range(5):
        reads.append(FakeRead(f"c1_{i}", reference_id=0, tags={"XC": "CELL1"}))
    for i in range(3):
        reads.append(FakeRead(f"c2_{i}", reference_id=1, tags={"XC": "CELL2"}))
    reads.append(FakeRead("untagged", reference_id=0))
    return reads


def test_extract_bucket_key_from_tag():
    assert extract_bucket_key(FakeRead(tags={"XC": "AAAC"}), "XC") == "AAAC"
    assert extract_bucket_key(FakeRead(tags={"XC": ""}), "XC") is None
    assert extract_bucket_key(FakeRead(tags={"XC": 12}), "XC") is None
    assert extract_bucket_key(FakeRead(), "XC") is None
    assert extract_bucket_key(FakeRead(tags={"CB": "G"}), "CB") == "G"


def test_extract_bucket_key_from_read_name():
    assert extract_bucket_key(FakeRead("CELL7:1101:2"), name_stop_chars=":") == "CELL7"
    assert extract_bucket_key(FakeRead("CELL7_x:1"), name_stop_chars=":_") == "CELL7"
    assert extract_bucket_key(FakeRead("WHOLE"), name_stop_chars=":") == "WHOLE"
    assert extract_bucket_key(FakeRead(":leading"), name_stop_chars=":") is None


def test_all_reads_mode_writes_single_first_file(tmp_path):
    reads = [
        FakeRead("a", reference_id=0, next_reference_id=1, is_paired=True),
        FakeRead("b", reference_id=1, mate_is_unmapped=True),
        FakeRead("u", reference_id=-1, is_unmapped=True),
    ]
    reader = FakeReader(["chr1", "chr2"], reads)
    result, opener = _run(_config(tmp_path), reader)

    assert result.phase is CleavePhase.DONE
    assert reader.iterations == 1
    assert opener.names("sample_sel_all.bam") == ["a", "b", "u"]
    assert opener.names("sample_rest.bam") == []
    assert result.statistics[1].mapped_pairs == 1
    assert result.statistics[1].single_mapped == 1
    assert result.statistics.unmapped == 1
    assert result.chimera_report is None
    assert (tmp_path / "out" / "sample_split.log").exists()
    assert reader.closed


def test_prefix_split_routes_by_destination(tmp_path):
    reads = [
        FakeRead("human", reference_id=0, next_reference_id=0),
        FakeRead("mouse", reference_id=2, next_reference_id=2),
        FakeRead("chimera", reference_id=2, next_reference_id=1, reference_start=5, next_reference_start=9),
    ]
    reader = FakeReader(["chrA", "chrB", "mouse_chr1"], reads)
    cfg = _config(tmp_path, prefix="mouse_")
    result, opener = _run(cfg, reader)

    first = opener.writers[str(tmp_path / "out" / "sample_mouse_all.bam")]
    rest = opener.writers[str(tmp_path / "out" / "sample_rest.bam")]
    assert [sq["SN"] for sq in first.header["SQ"]] == ["chr1"]
    assert [sq["SN"] for sq in rest.header["SQ"]] == ["chrA", "chrB"]
    assert [r.query_name for r in first.records] == ["mouse", "chimera"]
    assert [r.query_name for r in rest.records] == ["human"]

    chimera = first.records[1]
    assert chimera.mate_is_unmapped
    assert chimera.reference_id == chimera.next_reference_id == 0
    assert result.statistics[1].chimeras == 1
    assert result.statistics.records == 3

    lines = (tmp_path / "out" / "sample_chimeras.txt").read_text().splitlines()
    assert lines[1] == "mouse_chr1\t5\tchrB\t9"


def test_program_record_added_to_headers(tmp_path):
    reader = FakeReader(["chr1"], [FakeRead("a")])
    cfg = _config(tmp_path, command_line="bamcleave split -b sample.bam")
    _, opener = _run(cfg, reader)
    for writer in opener.writers.values():
        assert writer.header["PG"][-1] == {
            "ID": "bamcleave",
            "PN": "bamcleave",
            "CL": "bamcleave split -b sample.bam",
        }


def test_top_k_cells_route_unadmitted_to_fallback(tmp_path):
    reader = FakeReader(["chr1", "chr2"], _cell_reads())
    cfg = _config(tmp_path, cell_mode=True, max_cells=1)
    result, opener = _run(cfg, reader)

    assert reader.rewinds == 1
    assert reader.iterations == 2
    assert result.discovery_records == result.commit_records == 9
    assert opener.names("sample_sel_CELL1.bam") == [f"c1_{i}" for i in range(5)]
    rest = opener.names("sample_rest.bam")
    assert rest == ["c2_0", "c2_1", "c2_2", "untagged"]
    assert str(tmp_path / "out" / "sample_sel_CELL2.bam") not in opener.writers

    registry = result.registry
    assert registry.get("CELL1").state is BucketState.ADMITTED
    assert registry.get("CELL2").state is BucketState.REJECTED
    assert registry.get("CELL1").saved == 5
    assert registry.get("CELL2").saved == 0

    log = (tmp_path / "out" / "sample_split.log").read_text().splitlines()
    start = log.index("Saved cell data")
    assert log[start + 1 : start + 4] == ["Cell\tReads\tSaved", "CELL1\t5\t5", "CELL2\t3\t0"]


def test_cells_only_counted_on_first_destination(tmp_path):
    reads = [
        FakeRead("h1", reference_id=0, tags={"XC": "HUMANCELL"}),
        FakeRead("m1", reference_id=1, tags={"XC": "MOUSECELL"}),
    ]
    reader = FakeReader(["chr1", "mm_chr1"], reads)
    cfg = _config(tmp_path, prefix="mm_", cell_mode=True, max_cells=5)
    result, opener = _run(cfg, reader)
    assert "HUMANCELL" not in result.registry
    assert opener.names("sample_mm_MOUSECELL.bam") == ["m1"]
    assert opener.names("sample_rest.bam") == ["h1"]


def test_unadmitted_first_genome_reads_are_shifted_into_rest_header(tmp_path):
    reads = [
        FakeRead("a1", reference_id=1, next_reference_id=2, tags={"XC": "AAAA"}),
        FakeRead("a2", reference_id=2, tags={"XC": "AAAA"}),
        FakeRead("c", reference_id=2, next_reference_id=1, tags={"XC": "CCCC"}),
        FakeRead("h", reference_id=0, next_reference_id=0, tags={"XC": "CCCC"}),
    ]
    reader = FakeReader(["chr1", "mm_chr1", "mm_chr2"], reads)
    cfg = _config(tmp_path, prefix="mm_", cell_mode=True, max_cells=1)
    _, opener = _run(cfg, reader)

    rest = opener.writers[str(tmp_path / "out" / "sample_rest.bam")]
    assert [sq["SN"] for sq in rest.header["SQ"]] == ["chr1", "mm_chr1", "mm_chr2"]
    placed = {r.query_name: (r.reference_id, r.next_reference_id) for r in rest.records}
    assert placed == {"c": (2, 1), "h": (0, 0)}

    cell = opener.writers[str(tmp_path / "out" / "sample_mm_AAAA.bam")]
    assert [sq["SN"] for sq in cell.header["SQ"]] == ["chr1", "chr2"]
    assert [(r.reference_id, r.next_reference_id) for r in cell.records] == [(0, 1), (1, -1)]


def test_name_derived_cells(tmp_path):
    reads = [
        FakeRead("AAA:1", reference_id=0),
        FakeRead("AAA:2", reference_id=0),
        FakeRead("CCC:1", reference_id=0),
    ]
    reader = FakeReader(["chr1"], reads)
    cfg = _config(tmp_path, cell_mode=True, max_cells=2, name_stop_chars=":")
    _, opener = _run(cfg, reader)
    assert opener.names("sample_sel_AAA.bam") == ["AAA:1", "AAA:2"]
    assert opener.names("sample_sel_CCC.bam") == ["CCC:1"]


def test_group_mode_shares_output_and_skips_reports(tmp_path):
    group_file = tmp_path / "groups.txt"
    group_file.write_text("CELL1-7\nCELL2-7\n")
    reader = FakeReader(["chr1", "chr2"], _cell_reads())
    cfg = _config(tmp_path, cell_mode=True, group_file_path=str(group_file))
    result, opener = _run(cfg, reader)

    group_names = opener.names("sample_sel_group_7.bam")
    registry = result.registry
    assert len(group_names) == registry.get("CELL1").count + registry.get("CELL2").count == 8
    assert registry.channel_for("CELL1") == registry.channel_for("CELL2")
    assert opener.names("sample_rest.bam") == ["untagged"]
    assert result.statistics.records == 0
    assert result.split_log is None
    assert not (tmp_path / "out" / "sample_split.log").exists()


def test_group_mode_headers_only(tmp_path):
    group_file = tmp_path / "groups.txt"
    group_file.write_text("CELL1-3\n")
    reader = FakeReader(["chr1", "chr2"], _cell_reads())
    cfg = _config(tmp_path, cell_mode=True, group_file_path=str(group_file), materialize_groups=False)
    result, opener = _run(cfg, reader)
    assert str(tmp_path / "out" / "sample_sel_group_3.bam") in opener.writers
    assert opener.names("sample_sel_group_3.bam") == []
    assert result.commit_records == 0
    assert all(w.closed for w in opener.writers.values())


def test_listed_cells(tmp_path):
    cell_list = tmp_path / "cells.txt"
    cell_list.write_text("CELL2\n")
    reader = FakeReader(["chr1", "chr2"], _cell_reads())
    cfg = _config(tmp_path, cell_mode=True, cell_list_path=str(cell_list))
    _, opener = _run(cfg, reader)
    assert opener.names("sample_sel_CELL2.bam") == ["c2_0", "c2_1", "c2_2"]
    assert len(opener.names("sample_rest.bam")) == 6


def test_open_file_exhaustion_degrades(tmp_path):
    reader = FakeReader(["chr1", "chr2"], _cell_reads())
    cfg = _config(tmp_path, cell_mode=True, max_cells=10)
    # fallback plus one cell file
    result, opener = _run(cfg, reader, FakeOpener(limit=2))
    assert result.phase is CleavePhase.DONE
    assert result.registry.exhausted_at == "CELL2"
    assert len(opener.names("sample_sel_CELL1.bam")) == 5
    assert len(opener.names("sample_rest.bam")) == 4


def test_fallback_open_failure_is_fatal(tmp_path):
    reader = FakeReader(["chr1"], [FakeRead("a")])
    with pytest.raises(CleaveError, match="second bam file"):
        _run(_config(tmp_path), reader, FakeOpener(limit=0))
    assert reader.closed


def test_missing_group_file_is_fatal(tmp_path):
    reader = FakeReader(["chr1"], [FakeRead("a")])
    cfg = _config(tmp_path, cell_mode=True, group_file_path=str(tmp_path / "missing.txt"))
    with pytest.raises(CleaveError, match="mapping file"):
        _run(cfg, reader)


def test_stream_input_rejected_for_cells(tmp_path):
    reader = FakeReader(["chr1"], [])
    cfg = _config(tmp_path, input_bam="-", cell_mode=True, max_cells=1)
    with pytest.raises(ValueError, match="stream"):
        _run(cfg, reader)
