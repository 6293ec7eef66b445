"""Tests for MS2 extraction, linking and consolidation."""

import numpy as np
import pandas as pd
import pytest

from fbmnkit.config import MS2Settings
from fbmnkit.processing.ms2 import (
    SPECTRUM_COLUMNS,
    consolidate_spectra,
    extract_ms2_spectra,
    keep_features_with_ms2,
    link_ms2_to_features,
    merge_spectra,
)


class TestExtractMs2Spectra:
    """Tests for MS2 extraction from experiments."""

    def test_one_row_per_scan(self, synthetic_experiment):
        spectra = extract_ms2_spectra(synthetic_experiment, "run.mzML")
        assert list(spectra.columns) == SPECTRUM_COLUMNS
        assert len(spectra) == 4
        assert (spectra["sample"] == "run.mzML").all()

    def test_precursor_information(self, synthetic_experiment):
        spectra = extract_ms2_spectra(synthetic_experiment, "run.mzML")
        first = spectra.sort_values("precursor_mz").iloc[0]
        assert first["precursor_mz"] == pytest.approx(181.0707)
        assert first["charge"] == 1
        assert first["rt"] == pytest.approx(60.5)
        assert first["tic"] == pytest.approx(float(np.sum(first["intensity"])))

    def test_experiment_without_ms2(self, experiment_factory):
        exp = experiment_factory(with_ms2=False)
        spectra = extract_ms2_spectra(exp, "run.mzML")
        assert spectra.empty
        assert list(spectra.columns) == SPECTRUM_COLUMNS


class TestLinkMs2ToFeatures:
    """Tests for precursor to feature matching."""

    def test_links_matching_spectra(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra, feature_table)
        assert linked.columns[0] == "feature_id"
        assert sorted(linked["feature_id"].unique()) == ["FT0001", "FT0002", "FT0003"]
        assert len(linked) == 6

    def test_unmatched_dropped(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra, feature_table)
        assert not (linked["precursor_mz"] > 900).any()
        # the [M+Na]+ precursor has no feature in the table
        assert not np.isclose(linked["precursor_mz"], 203.0531).any()

    def test_rt_tolerance(self, ms2_spectra, feature_table):
        shifted = ms2_spectra.copy()
        shifted["rt"] = shifted["rt"] + 10.0
        assert link_ms2_to_features(shifted, feature_table).empty
        linked = link_ms2_to_features(
            shifted, feature_table, MS2Settings(rt_tolerance=5.0)
        )
        assert len(linked) == 6

    def test_mz_tolerance(self, ms2_spectra, feature_table):
        shifted = ms2_spectra.copy()
        shifted["precursor_mz"] = shifted["precursor_mz"] + 0.01
        assert link_ms2_to_features(shifted, feature_table).empty
        linked = link_ms2_to_features(
            shifted, feature_table, MS2Settings(mz_abs=0.02)
        )
        assert len(linked) == 6

    def test_spectrum_linked_to_overlapping_features(self, ms2_spectra, feature_table):
        duplicate = feature_table.loc[["FT0001"]].rename(index={"FT0001": "FT0004"})
        table = pd.concat([feature_table, duplicate])
        linked = link_ms2_to_features(ms2_spectra, table)
        scans_ft1 = set(linked.loc[linked["feature_id"] == "FT0001", "scan"])
        scans_ft4 = set(linked.loc[linked["feature_id"] == "FT0004", "scan"])
        assert scans_ft1 == scans_ft4
        assert len(scans_ft1) == 2

    def test_empty_input(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra.iloc[0:0], feature_table)
        assert linked.empty
        assert "feature_id" in linked.columns


class TestMergeSpectra:
    """Tests for consensus spectrum building."""

    def test_single_spectrum_sorted(self):
        spectrum = (np.array([200.0, 100.0]), np.array([1.0, 2.0]))
        mz, intensity = merge_spectra([spectrum])
        np.testing.assert_array_equal(mz, [100.0, 200.0])
        np.testing.assert_array_equal(intensity, [2.0, 1.0])

    def test_groups_within_ppm(self):
        spectra = [
            (np.array([100.0, 200.0]), np.array([10.0, 5.0])),
            (np.array([100.001, 300.0]), np.array([30.0, 5.0])),
        ]
        mz, intensity = merge_spectra(spectra, ppm=20, min_fraction=0.5)
        assert len(mz) == 3
        # intensity weighted m/z of the shared fragment
        assert mz[0] == pytest.approx((100.0 * 10 + 100.001 * 30) / 40)
        assert intensity[0] == 30.0

    def test_min_fraction(self):
        spectra = [
            (np.array([100.0, 200.0]), np.array([10.0, 5.0])),
            (np.array([100.001, 300.0]), np.array([30.0, 5.0])),
        ]
        mz, _intensity = merge_spectra(spectra, ppm=20, min_fraction=1.0)
        assert len(mz) == 1

    def test_fragments_outside_ppm_kept_apart(self):
        spectra = [
            (np.array([100.0]), np.array([1.0])),
            (np.array([100.01]), np.array([1.0])),
        ]
        mz, _intensity = merge_spectra(spectra, ppm=20, min_fraction=0.5)
        assert len(mz) == 2

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="must not be empty"):
            merge_spectra([])


class TestConsolidateSpectra:
    """Tests for reducing linked spectra to one per feature."""

    def test_max_tic(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra, feature_table)
        result = consolidate_spectra(linked)
        assert result["feature_id"].tolist() == ["FT0001", "FT0002", "FT0003"]
        assert (result["sample"] == "a.mzML").all()
        assert (result["n_spectra"] == 2).all()

    def test_consensus(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra, feature_table)
        result = consolidate_spectra(linked, MS2Settings(method="consensus"))
        first = result.set_index("feature_id").loc["FT0001"]
        np.testing.assert_allclose(first["mz"], [85.0284, 145.0495, 163.0601])
        # maximum over the two spectra
        np.testing.assert_allclose(first["intensity"], [200.0, 600.0, 1000.0])

    def test_relative_intensity_filter(self, ms2_spectra, feature_table):
        linked = link_ms2_to_features(ms2_spectra, feature_table)
        result = consolidate_spectra(linked, MS2Settings(min_relative_intensity=0.5))
        first = result.set_index("feature_id").loc["FT0001"]
        assert len(first["mz"]) == 2
        assert first["tic"] == pytest.approx(1600.0)

    def test_empty(self, feature_table):
        no_spectra = pd.DataFrame(columns=SPECTRUM_COLUMNS)
        empty = link_ms2_to_features(no_spectra, feature_table)
        result = consolidate_spectra(empty)
        assert result.empty
        assert "n_spectra" in result.columns


class TestKeepFeaturesWithMs2:
    def test_subset(self, ms2_spectra, feature_table):
        spectra = consolidate_spectra(
            link_ms2_to_features(ms2_spectra, feature_table.loc[["FT0001", "FT0003"]])
        )
        kept = keep_features_with_ms2(feature_table, spectra)
        assert list(kept.index) == ["FT0001", "FT0003"]

    def test_no_spectra(self, feature_table):
        no_spectra = pd.DataFrame(columns=["feature_id"])
        kept = keep_features_with_ms2(feature_table, no_spectra)
        assert kept.empty
        assert list(kept.columns) == list(feature_table.columns)
