"""Workflow settings for LC-MS/MS preprocessing.

Each processing step reads its parameters from a small dataclass. The
defaults follow the values recommended for high-resolution (Orbitrap,
Q-TOF) untargeted metabolomics data and can be overridden in code or
from a JSON/YAML file.

Examples
--------
>>> from fbmnkit.config import WorkflowSettings
>>> settings = WorkflowSettings.default()
>>> settings.peak_picking.noise_threshold_int = 5e3
>>> settings.to_json("settings.json")
>>> settings = WorkflowSettings.from_yaml("settings.yaml")
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

POSITIVE_ADDUCTS = [
    "H:+:0.45",
    "Na:+:0.2",
    "NH4:+:0.2",
    "K:+:0.1",
    "H-2O-1:0:0.05",
    "H-1O-1:+:0.05",
]

NEGATIVE_ADDUCTS = [
    "H-1:-:0.9",
    "Cl:-:0.1",
    "CH2O2:0:0.2",
    "H-2O-1:0:0.1",
]


def _check_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"{name} must be one of {choices}, got {value!r}.")


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")


def _check_adducts(adducts: list[str]) -> None:
    """Validate ``formula:charge:probability`` entries.

    The probabilities of the charged adducts must sum to 1.
    """
    total = 0.0
    for entry in adducts:
        parts = entry.split(":")
        if len(parts) < 3:
            raise ValueError(
                f"Adduct {entry!r} must be written as 'formula:charge:probability'."
            )
        charge = parts[1]
        if charge != "0" and set(charge) not in ({"+"}, {"-"}):
            raise ValueError(f"Invalid charge {charge!r} in adduct {entry!r}.")
        try:
            probability = float(parts[2])
        except ValueError:
            raise ValueError(f"Invalid probability in adduct {entry!r}.") from None
        if not 0.0 < probability <= 1.0:
            raise ValueError(
                f"Adduct probability must be within (0, 1], got {entry!r}."
            )
        if charge != "0":
            total += probability
    if abs(total - 1.0) > 1e-6:
        raise ValueError(
            f"Charged adduct probabilities must sum to 1, got {total:.4g}."
        )


@dataclass
class PeakPickingSettings:
    """Chromatographic feature detection (mass traces -> features).

    Parameters
    ----------
    mass_error_ppm : float, default=10.0
        Allowed m/z deviation of consecutive centroids within a mass trace.
        Use roughly 3x the mass accuracy of the instrument.
    noise_threshold_int : float, default=1e4
        Intensity below which centroids are ignored.
    chrom_peak_snr : float, default=3.0
        Minimum signal-to-noise of a chromatographic peak.
    min_trace_length, max_trace_length : float
        Mass trace length bounds in seconds (-1 disables the upper bound).
    width_filtering : str, default="fixed"
        ``"fixed"`` keeps peaks with FWHM in ``[min_fwhm, max_fwhm]``,
        ``"auto"`` estimates the bounds from the data, ``"off"`` disables it.
    min_fwhm, max_fwhm, chrom_fwhm : float
        Peak width bounds and expected width, in seconds.
    remove_single_traces : bool, default=False
        Drop features without isotope traces.
    isotope_filtering_model : str, default="none"
    charge_lower_bound, charge_upper_bound : int
        Charge range considered when assembling isotope patterns.
    """

    mass_error_ppm: float = 10.0
    noise_threshold_int: float = 1.0e4
    chrom_peak_snr: float = 3.0
    min_trace_length: float = 5.0
    max_trace_length: float = -1.0
    width_filtering: str = "fixed"
    min_fwhm: float = 1.0
    max_fwhm: float = 60.0
    chrom_fwhm: float = 5.0
    remove_single_traces: bool = False
    isotope_filtering_model: str = "none"
    charge_lower_bound: int = 1
    charge_upper_bound: int = 3

    def __post_init__(self):
        _check_positive("mass_error_ppm", self.mass_error_ppm)
        _check_choice("width_filtering", self.width_filtering, ("fixed", "auto", "off"))
        if self.min_fwhm >= self.max_fwhm:
            raise ValueError(
                f"min_fwhm ({self.min_fwhm}) must be less than "
                f"max_fwhm ({self.max_fwhm})."
            )
        if self.charge_lower_bound > self.charge_upper_bound:
            raise ValueError(
                f"charge_lower_bound ({self.charge_lower_bound}) must not exceed "
                f"charge_upper_bound ({self.charge_upper_bound})."
            )


@dataclass
class AlignmentSettings:
    """Retention time alignment against a reference sample.

    ``reference=None`` uses the sample with the most detected features,
    which works well when a pooled QC is part of the batch.
    """

    enabled: bool = True
    reference: str | int | None = None
    mz_max_difference: float = 10.0
    mz_unit: str = "ppm"
    rt_max_difference: float = 100.0
    max_num_peaks_considered: int = -1

    def __post_init__(self):
        _check_choice("mz_unit", self.mz_unit, ("ppm", "Da"))
        _check_positive("mz_max_difference", self.mz_max_difference)
        _check_positive("rt_max_difference", self.rt_max_difference)


@dataclass
class GroupingSettings:
    """Correspondence of features across samples.

    ``min_fraction`` mirrors the xcms peak-density parameter of the same
    name: a feature is kept if it was detected in at least this fraction
    of the samples of any one sample group.
    """

    mz_tol: float = 10.0
    mz_unit: str = "ppm"
    rt_tol: float = 10.0
    warp: bool = True
    min_fraction: float = 0.4
    min_samples: int = 1

    def __post_init__(self):
        _check_choice("mz_unit", self.mz_unit, ("ppm", "Da"))
        _check_positive("mz_tol", self.mz_tol)
        _check_positive("rt_tol", self.rt_tol)
        if not 0.0 <= self.min_fraction <= 1.0:
            raise ValueError(
                f"min_fraction must be within [0, 1], got {self.min_fraction}."
            )
        if self.min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {self.min_samples}.")


@dataclass
class GapFillingSettings:
    """Integration window used to recover missing intensities."""

    enabled: bool = True
    ppm: float = 10.0
    expand_mz: float = 0.0
    expand_rt: float = 0.0

    def __post_init__(self):
        if self.ppm < 0 or self.expand_mz < 0 or self.expand_rt < 0:
            raise ValueError("Gap filling tolerances must be non-negative.")


@dataclass
class MS2Settings:
    """Linking of MS2 scans to features and spectrum consolidation.

    Parameters
    ----------
    ppm, mz_abs : float
        Precursor m/z tolerance added to the feature m/z range.
    rt_tolerance : float, default=0.0
        Seconds added on both sides of the feature RT range.
    method : str, default="max_tic"
        ``"max_tic"`` keeps the spectrum with the highest total ion
        current, ``"consensus"`` merges all spectra of a feature.
    peak_ppm : float, default=20.0
        Fragment m/z tolerance when building consensus spectra.
    min_peak_fraction : float, default=0.5
        Fraction of spectra a fragment must be present in (consensus only).
    min_relative_intensity : float, default=0.0
        Fragments below this fraction of the base peak are removed.
    only_with_ms2 : bool, default=True
        Restrict the exported feature table to features with a spectrum.
    """

    ppm: float = 10.0
    mz_abs: float = 0.005
    rt_tolerance: float = 0.0
    method: str = "max_tic"
    peak_ppm: float = 20.0
    min_peak_fraction: float = 0.5
    min_relative_intensity: float = 0.0
    only_with_ms2: bool = True

    def __post_init__(self):
        _check_choice("method", self.method, ("max_tic", "consensus"))
        if not 0.0 < self.min_peak_fraction <= 1.0:
            raise ValueError(
                "min_peak_fraction must be within (0, 1], "
                f"got {self.min_peak_fraction}."
            )
        if not 0.0 <= self.min_relative_intensity < 1.0:
            raise ValueError(
                "min_relative_intensity must be within [0, 1), "
                f"got {self.min_relative_intensity}."
            )


@dataclass
class AnnotationSettings:
    """Adduct grouping of co-eluting features.

    ``adducts`` uses the OpenMS ``formula:charge:probability`` notation;
    when omitted a default list for ``polarity`` is used.
    """

    enabled: bool = True
    polarity: str = "positive"
    adducts: list[str] | None = None
    charge_min: int = 1
    charge_max: int = 1
    retention_max_diff: float = 3.0
    mass_max_diff: float = 0.05
    unit: str = "Da"

    def __post_init__(self):
        _check_choice("polarity", self.polarity, ("positive", "negative"))
        _check_choice("unit", self.unit, ("Da", "ppm"))
        if self.charge_min > self.charge_max:
            raise ValueError(
                f"charge_min ({self.charge_min}) must not exceed "
                f"charge_max ({self.charge_max})."
            )
        _check_adducts(self.potential_adducts)

    @property
    def potential_adducts(self) -> list[str]:
        """Adduct list passed to the deconvolution algorithm."""
        if self.adducts is not None:
            return list(self.adducts)
        if self.polarity == "negative":
            return list(NEGATIVE_ADDUCTS)
        return list(POSITIVE_ADDUCTS)


@dataclass
class ExportSettings:
    """GNPS export flavour and file name prefix."""

    style: str = "xcms"
    prefix: str = "fbmn"

    def __post_init__(self):
        _check_choice("style", self.style, ("xcms", "mzmine"))


_SECTIONS = {
    "peak_picking": PeakPickingSettings,
    "alignment": AlignmentSettings,
    "grouping": GroupingSettings,
    "gap_filling": GapFillingSettings,
    "ms2": MS2Settings,
    "annotation": AnnotationSettings,
    "export": ExportSettings,
}


@dataclass
class WorkflowSettings:
    """All settings of the preprocessing workflow."""

    peak_picking: PeakPickingSettings = field(default_factory=PeakPickingSettings)
    alignment: AlignmentSettings = field(default_factory=AlignmentSettings)
    grouping: GroupingSettings = field(default_factory=GroupingSettings)
    gap_filling: GapFillingSettings = field(default_factory=GapFillingSettings)
    ms2: MS2Settings = field(default_factory=MS2Settings)
    annotation: AnnotationSettings = field(default_factory=AnnotationSettings)
    export: ExportSettings = field(default_factory=ExportSettings)

    @classmethod
    def default(cls) -> WorkflowSettings:
        """Return settings with every default value."""
        return cls()

    def to_dict(self) -> dict:
        """Serialize the settings to a nested dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> WorkflowSettings:
        """Build settings from a (possibly partial) nested dictionary.

        Raises
        ------
        ValueError
            If a section or a key within a section is unknown.
        """
        kwargs = {}
        for section, values in d.items():
            if section not in _SECTIONS:
                raise ValueError(
                    f"Unknown settings section {section!r}. "
                    f"Available: {sorted(_SECTIONS)}"
                )
            section_cls = _SECTIONS[section]
            known = {f.name for f in fields(section_cls)}
            unknown = set(values or {}) - known
            if unknown:
                raise ValueError(
                    f"Unknown key(s) {sorted(unknown)} in section {section!r}."
                )
            kwargs[section] = section_cls(**(values or {}))
        return cls(**kwargs)

    def to_json(self, path: str | Path) -> None:
        """Save the settings to a JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_json(cls, path: str | Path) -> WorkflowSettings:
        """Load settings from a JSON file."""
        with open(path) as f:
            return cls.from_dict(json.load(f))

    def to_yaml(self, path: str | Path) -> None:
        """Save the settings to a YAML file.

        Requires ``pyyaml`` to be installed.
        """
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)

    @classmethod
    def from_yaml(cls, path: str | Path) -> WorkflowSettings:
        """Load settings from a YAML file.

        Requires ``pyyaml`` to be installed.
        """
        import yaml

        with open(path) as f:
            return cls.from_dict(yaml.safe_load(f) or {})

    @classmethod
    def from_file(cls, path: str | Path) -> WorkflowSettings:
        """Load settings from a JSON or YAML file, chosen by suffix."""
        path = Path(path)
        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        return cls.from_json(path)
