"""Tests for file reading utilities."""

from __future__ import annotations

import csv

import numpy as np
import pytest

from fbmnkit.io import (
    experiment_to_frame,
    find_raw_files,
    load_experiment,
    read_sample_metadata,
    sniff_delimiter,
)


class TestFindRawFiles:
    """Tests for raw file discovery."""

    def test_sorted_and_case_insensitive(self, tmp_path):
        for name in ("b.mzML", "a.MZML", "c.mzXML", "notes.txt", "d.mzml.gz"):
            (tmp_path / name).write_text("")
        files = find_raw_files(tmp_path)
        assert [f.name for f in files] == ["a.MZML", "b.mzML", "c.mzXML"]

    def test_custom_extensions(self, tmp_path):
        (tmp_path / "a.mzML").write_text("")
        (tmp_path / "b.mzXML").write_text("")
        assert [f.name for f in find_raw_files(tmp_path, (".mzxml",))] == ["b.mzXML"]

    def test_subdirectories_ignored(self, tmp_path):
        (tmp_path / "nested.mzML").mkdir()
        assert find_raw_files(tmp_path) == []

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            find_raw_files(tmp_path / "missing")


class TestLoadExperiment:
    """Tests for mzML/mzXML loading."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_experiment(tmp_path / "missing.mzML")

    def test_unsupported_suffix(self, tmp_path):
        f = tmp_path / "run.raw"
        f.write_text("")
        with pytest.raises(ValueError, match="Unsupported"):
            load_experiment(f)

    def test_mzml_roundtrip(self, tmp_path, synthetic_experiment):
        import pyopenms as oms

        path = tmp_path / "run.mzML"
        oms.MzMLFile().store(str(path), synthetic_experiment)
        exp = load_experiment(path)
        assert exp.getNrSpectra() == synthetic_experiment.getNrSpectra()
        rts = [spec.getRT() for spec in exp]
        assert rts == sorted(rts)


class TestExperimentToFrame:
    """Tests for flattening experiments."""

    def test_ms1_columns(self, synthetic_experiment):
        frame = experiment_to_frame(synthetic_experiment)
        assert list(frame.columns) == ["scan", "rt", "mz", "intensity"]
        assert len(frame) > 0
        assert frame["intensity"].min() > 0

    def test_ms1_contains_compound(self, synthetic_experiment):
        frame = experiment_to_frame(synthetic_experiment)
        apex = frame[np.isclose(frame["mz"], 181.0707, atol=1e-4)]
        assert apex.loc[apex["intensity"].idxmax(), "rt"] == pytest.approx(60.0)

    def test_ms2_level(self, synthetic_experiment):
        frame = experiment_to_frame(synthetic_experiment, ms_level=2)
        assert frame["scan"].nunique() == 4

    def test_empty_level(self, synthetic_experiment):
        frame = experiment_to_frame(synthetic_experiment, ms_level=3)
        assert frame.empty
        assert list(frame.columns) == ["scan", "rt", "mz", "intensity"]


class TestSniffDelimiter:
    """Tests for delimiter detection."""

    def test_tab_delimiter(self, tmp_path):
        f = tmp_path / "tab.tsv"
        f.write_text("filename\tsample_group\na.mzML\tQC\nb.mzML\tblank\n")
        assert sniff_delimiter(f) == "\t"

    def test_comma_delimiter(self, tmp_path):
        f = tmp_path / "comma.csv"
        f.write_text("filename,sample_group\na.mzML,QC\nb.mzML,blank\n")
        assert sniff_delimiter(f) == ","

    def test_semicolon_delimiter(self, tmp_path):
        f = tmp_path / "semi.csv"
        f.write_text("filename;sample_group\na.mzML;QC\nb.mzML;blank\n")
        assert sniff_delimiter(f) == ";"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.csv"
        f.write_text("")
        with pytest.raises(csv.Error):
            sniff_delimiter(f)

    def test_comment_lines_skipped(self, tmp_path):
        f = tmp_path / "commented.csv"
        f.write_text("# batch 3; QC every 5 runs\nfilename,sample_group\na.mzML,QC\n")
        assert sniff_delimiter(f) == ","

    def test_header_without_filename(self, tmp_path):
        f = tmp_path / "other.csv"
        f.write_text("run;group\na.mzML;QC\nb.mzML;blank\n")
        assert sniff_delimiter(f) == ";"


class TestReadSampleMetadata:
    """Tests for sample sheet reading."""

    def test_comma_sheet(self, tmp_path):
        f = tmp_path / "samples.csv"
        f.write_text("filename,sample_group,batch\na.mzML,QC,1\nb.mzML,study,2\n")
        meta = read_sample_metadata(f)
        assert meta.index.name == "filename"
        assert list(meta.index) == ["a.mzML", "b.mzML"]
        assert meta.loc["b.mzML", "sample_group"] == "study"

    def test_tab_sheet_strips_headers(self, tmp_path):
        f = tmp_path / "samples.tsv"
        f.write_text("filename\t sample_group \na.mzML\tQC\nb.mzML\tstudy\n")
        meta = read_sample_metadata(f)
        assert "sample_group" in meta.columns

    def test_missing_filename_column(self, tmp_path):
        f = tmp_path / "samples.csv"
        f.write_text("file,group\na.mzML,QC\nb.mzML,study\n")
        with pytest.raises(ValueError, match="filename"):
            read_sample_metadata(f)

    def test_duplicated_filenames(self, tmp_path):
        f = tmp_path / "samples.csv"
        f.write_text("filename,sample_group\na.mzML,QC\na.mzML,study\n")
        with pytest.raises(ValueError, match="Duplicated"):
            read_sample_metadata(f)
