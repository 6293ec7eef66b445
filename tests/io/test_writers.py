"""Tests for the GNPS export writers."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest
from pyteomics import mgf

from fbmnkit.io import (
    format_feature_id,
    write_edge_table,
    write_feature_table,
    write_mgf,
    write_sample_metadata,
)
from fbmnkit.processing.ms2 import consolidate_spectra, link_ms2_to_features


@pytest.fixture
def consolidated(ms2_spectra, feature_table) -> pd.DataFrame:
    return consolidate_spectra(link_ms2_to_features(ms2_spectra, feature_table))


class TestFormatFeatureId:
    def test_xcms_keeps_id(self):
        assert format_feature_id("FT0012") == "FT0012"

    def test_mzmine_numeric(self):
        assert format_feature_id("FT0012", "mzmine") == "12"

    def test_invalid_style(self):
        with pytest.raises(ValueError, match="style"):
            format_feature_id("FT0001", "msdial")

    def test_invalid_id(self):
        with pytest.raises(ValueError, match="Invalid feature id"):
            format_feature_id("feature_1", "mzmine")


class TestWriteFeatureTable:
    """Tests for the quantification table."""

    def test_xcms_layout(self, tmp_path, feature_table):
        path = tmp_path / "quant.txt"
        write_feature_table(feature_table, path, "xcms")
        written = pd.read_csv(path, sep="\t")
        assert list(written.columns) == [
            "Row.names",
            "mzmed",
            "mzmin",
            "mzmax",
            "rtmed",
            "rtmin",
            "rtmax",
            "npeaks",
            "a.mzML",
            "b.mzML",
            "c.mzML",
        ]
        assert list(written["Row.names"]) == ["FT0001", "FT0002", "FT0003"]
        assert written["rtmed"].tolist() == [60.0, 120.0, 180.0]

    def test_missing_written_as_zero(self, tmp_path, feature_table):
        path = tmp_path / "quant.txt"
        write_feature_table(feature_table, path)
        written = pd.read_csv(path, sep="\t")
        assert written.loc[1, "b.mzML"] == 0
        assert not written.isna().any().any()

    def test_mzmine_layout(self, tmp_path, feature_table):
        path = tmp_path / "quant.csv"
        write_feature_table(feature_table, path, "mzmine")
        written = pd.read_csv(path)
        assert list(written.columns[:3]) == ["row ID", "row m/z", "row retention time"]
        assert "a.mzML Peak area" in written.columns
        assert written["row ID"].tolist() == [1, 2, 3]
        assert written["row retention time"].tolist() == pytest.approx([1.0, 2.0, 3.0])

    def test_input_not_modified(self, tmp_path, feature_table):
        before = feature_table.copy()
        write_feature_table(feature_table, tmp_path / "quant.txt")
        pd.testing.assert_frame_equal(feature_table, before)


class TestWriteMgf:
    """Tests for MGF export."""

    def test_one_block_per_feature(self, tmp_path, consolidated):
        path = tmp_path / "spectra.mgf"
        n = write_mgf(consolidated, path)
        assert n == 3
        blocks = list(mgf.read(str(path), convert_arrays=1))
        assert len(blocks) == 3

    def test_params(self, tmp_path, consolidated):
        path = tmp_path / "spectra.mgf"
        write_mgf(consolidated, path)
        text = path.read_text()
        assert "FEATURE_ID=FT0001" in text
        assert "SCANS=1" in text
        assert "MSLEVEL=2" in text
        assert "CHARGE=1+" in text
        assert "RTINSECONDS=60.5" in text

    def test_ids_match_mzmine_table(self, tmp_path, consolidated, feature_table):
        mgf_path = tmp_path / "spectra.mgf"
        table_path = tmp_path / "quant.csv"
        write_mgf(consolidated, mgf_path, "mzmine")
        write_feature_table(feature_table, table_path, "mzmine")
        table_ids = set(pd.read_csv(table_path)["row ID"].astype(str))
        text = mgf_path.read_text()
        mgf_ids = {
            line.split("=", 1)[1]
            for line in text.splitlines()
            if line.startswith("FEATURE_ID=")
        }
        assert mgf_ids <= table_ids

    def test_sorted_by_feature_number(self, tmp_path, consolidated):
        path = tmp_path / "spectra.mgf"
        write_mgf(consolidated.iloc[::-1], path)
        scans = [
            int(line.split("=")[1])
            for line in path.read_text().splitlines()
            if line.startswith("SCANS=")
        ]
        assert scans == sorted(scans)

    def test_negative_charge(self, tmp_path, consolidated):
        path = tmp_path / "spectra.mgf"
        write_mgf(consolidated, path, polarity="negative")
        assert "CHARGE=1-" in path.read_text()

    def test_fragments_written(self, tmp_path, consolidated):
        path = tmp_path / "spectra.mgf"
        write_mgf(consolidated, path)
        blocks = list(mgf.read(str(path), convert_arrays=1))
        first = blocks[0]
        np.testing.assert_allclose(
            sorted(first["m/z array"]), [85.0284, 145.0495, 163.0601], atol=1e-4
        )


class TestWriteEdgeTable:
    def test_columns_and_ids(self, tmp_path):
        edges = pd.DataFrame(
            {
                "ID1": ["FT0001"],
                "ID2": ["FT0004"],
                "EdgeType": ["MS1 annotation"],
                "Score": [1.0],
                "Annotation": ["[M+H]+ [M+Na]+"],
            }
        )
        path = tmp_path / "edges.csv"
        out = write_edge_table(edges, path, "mzmine")
        assert out["ID1"].tolist() == ["1"]
        written = pd.read_csv(path)
        columns = ["ID1", "ID2", "EdgeType", "Score", "Annotation"]
        assert list(written.columns) == columns
        assert written.loc[0, "ID2"] == 4

    def test_missing_columns(self, tmp_path):
        with pytest.raises(ValueError, match="missing columns"):
            write_edge_table(pd.DataFrame({"ID1": []}), tmp_path / "edges.csv")


class TestWriteSampleMetadata:
    def test_attribute_prefix(self, tmp_path):
        samples = pd.DataFrame(
            {"sample_group": ["QC", "study"], "ATTRIBUTE_batch": [1, 2]},
            index=pd.Index(["a.mzML", "b.mzML"], name="filename"),
        )
        path = tmp_path / "metadata.tsv"
        write_sample_metadata(samples, path)
        written = pd.read_csv(path, sep="\t")
        assert list(written.columns) == [
            "filename",
            "ATTRIBUTE_sample_group",
            "ATTRIBUTE_batch",
        ]
        assert written["filename"].tolist() == ["a.mzML", "b.mzML"]
