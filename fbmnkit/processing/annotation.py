"""Adduct and isotope annotation of features.

Per sample, co-eluting features are grouped into adduct groups by the
OpenMS metabolite feature deconvolution (the role CAMERA plays for xcms).
Isotopes are already assembled into features during peak picking, so the
number of isotope traces of each feature is carried along. The per-sample
annotations are then merged across samples onto the feature table and
turned into ion identity edges for GNPS.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from itertools import combinations
from typing import Sequence

import numpy as np
import pandas as pd
import pyopenms as oms

from ..config import AnnotationSettings

logger = logging.getLogger(__name__)

ELECTRON_MASS = 0.00054857990946

ANNOTATION_COLUMNS = [
    "adduct",
    "adduct_formula",
    "annotation_group",
    "charge",
    "n_isotopes",
    "neutral_mass",
]

_ELEMENT = re.compile(r"([A-Z][a-z]?)(-?\d*)")


def annotate_adducts(
    fmap: oms.FeatureMap,
    settings: AnnotationSettings | None = None,
) -> oms.FeatureMap:
    """
    Group the features of one sample into adduct groups.

    Parameters
    ----------
    fmap : pyopenms.FeatureMap
        Features of one sample.
    settings : AnnotationSettings, optional
        Adduct list and tolerances.

    Returns
    -------
    pyopenms.FeatureMap
        Decharged copy of *fmap*; features carry the ``dc_charge_adducts``
        and ``Group`` meta values when an adduct relation was found.
    """
    if settings is None:
        settings = AnnotationSettings()
    if fmap.size() == 0:
        return oms.FeatureMap(fmap)

    decharger = oms.MetaboliteFeatureDeconvolution()
    params = decharger.getDefaults()
    params.setValue(
        "potential_adducts", [a.encode() for a in settings.potential_adducts]
    )
    params.setValue("charge_min", int(settings.charge_min))
    params.setValue("charge_max", int(settings.charge_max))
    span = settings.charge_max - settings.charge_min + 1
    params.setValue("charge_span_max", int(span))
    params.setValue("retention_max_diff", float(settings.retention_max_diff))
    params.setValue("retention_max_diff_local", float(settings.retention_max_diff))
    params.setValue("mass_max_diff", float(settings.mass_max_diff))
    params.setValue("unit", settings.unit)
    params.setValue(
        "negative_mode", "true" if settings.polarity == "negative" else "false"
    )
    decharger.setParameters(params)

    out = oms.FeatureMap()
    groups = oms.ConsensusMap()
    edges = oms.ConsensusMap()
    decharger.compute(fmap, out, groups, edges)
    logger.debug("Adduct deconvolution: %d groups", groups.size())
    return out


def parse_formula(formula: str) -> dict[str, int]:
    """Parse an OpenMS formula string such as ``H-1O-1`` into counts."""
    counts: dict[str, int] = {}
    for element, number in _ELEMENT.findall(formula or ""):
        if number in ("", "-"):
            n = -1 if number == "-" else 1
        else:
            n = int(number)
        counts[element] = counts.get(element, 0) + n
    return {el: n for el, n in counts.items() if n != 0}


def format_adduct(formula: str, charge: int) -> str:
    """
    Build an ``[M+X]z+`` label from an adduct formula and charge.

    Parameters
    ----------
    formula : str
        Adduct formula as written by OpenMS (``Na1``, ``H2``, ``H4N1``,
        ``H-1``, ...).
    charge : int
        Signed charge of the ion.

    Returns
    -------
    str
        Label such as ``[M+Na]+``, ``[M+2H]2+`` or ``[M-H]-``; an empty
        string when *formula* is empty.

    Examples
    --------
    >>> format_adduct("H4N1", 1)
    '[M+NH4]+'
    >>> format_adduct("H-1", -1)
    '[M-H]-'
    """
    counts = parse_formula(formula)
    if not counts:
        return ""

    terms = []
    nitrogen = counts.get("N", 0)
    if nitrogen > 0 and counts.get("H", 0) >= 4 * nitrogen:
        terms.append(("NH4", nitrogen))
        counts["H"] -= 4 * nitrogen
        del counts["N"]
        counts = {el: n for el, n in counts.items() if n != 0}

    for element in sorted(counts, key=lambda el: (el != "H", el)):
        terms.append((element, counts[element]))
    # ammonium after a proton reads more naturally as [M+H+NH4]
    terms.sort(key=lambda t: (t[0] != "H", t[0] == "NH4"))

    label = "M"
    for name, n in terms:
        sign = "+" if n > 0 else "-"
        label += f"{sign}{abs(n) if abs(n) > 1 else ''}{name}"

    z = abs(int(charge)) or 1
    polarity = "-" if charge < 0 else "+"
    return f"[{label}]{z if z > 1 else ''}{polarity}"


def neutral_mass(mz: float, formula: str, charge: int) -> float:
    """
    Return the neutral mass of an ion with a known adduct.

    ``M = mz * |z| - mass(adduct) + z * m_e``; NaN when *formula* is empty.
    """
    if not formula:
        return np.nan
    z = int(charge) or 1
    adduct_mass = oms.EmpiricalFormula(formula).getMonoWeight()
    return mz * abs(z) - adduct_mass + z * ELECTRON_MASS


class _UnionFind:
    def __init__(self, items):
        self.parent = {item: item for item in items}

    def find(self, item):
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, a, b):
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


def consensus_annotations(
    table: pd.DataFrame,
    members: Sequence[Sequence[tuple[int, int]]],
    feature_frames: Sequence[pd.DataFrame],
    sample_names: Sequence[str],
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Merge per-sample adduct annotations onto the feature table.

    The adduct of a feature is the one assigned most often across its
    member features. Two features share an ``annotation_group`` when, in
    at least one sample, their members fell into the same adduct group;
    groups are numbered from 1 in feature order.

    Parameters
    ----------
    table : pd.DataFrame
        Feature table.
    members : sequence
        ``(map_index, unique_id)`` pairs per row of *table*.
    feature_frames : sequence of pd.DataFrame
        Per-sample frames from ``feature_map_to_frame``.
    sample_names : sequence of str
        Sample names in map order.

    Returns
    -------
    annotations : pd.DataFrame
        Indexed by feature id with the columns in ``ANNOTATION_COLUMNS``.
    memberships : pd.DataFrame
        Long frame ``feature_id``, ``sample``, ``adduct_group`` of every
        member that carried an adduct group.
    """
    if len(members) != len(table):
        raise ValueError(
            f"Got {len(members)} member lists for {len(table)} table rows."
        )

    rows = []
    links = []
    for fid, group, mzmed in zip(table.index, members, table["mzmed"]):
        formulas = []
        charges = []
        isotopes = []
        for m, uid in group:
            feature = feature_frames[m].loc[uid]
            isotopes.append(int(feature["n_isotopes"]))
            charges.append(int(feature["charge"]))
            if feature["adduct"]:
                formulas.append((feature["adduct"], int(feature["charge"])))
            if feature["adduct_group"]:
                links.append(
                    {
                        "feature_id": fid,
                        "sample": sample_names[m],
                        "adduct_group": str(feature["adduct_group"]),
                    }
                )

        if formulas:
            (formula, charge), _ = Counter(formulas).most_common(1)[0]
        else:
            formula = ""
            charge = Counter(charges).most_common(1)[0][0] if charges else 0
        rows.append(
            {
                "adduct": format_adduct(formula, charge),
                "adduct_formula": formula,
                "charge": charge,
                "n_isotopes": int(np.median(isotopes)) if isotopes else 0,
                "neutral_mass": neutral_mass(mzmed, formula, charge),
            }
        )

    annotations = pd.DataFrame(rows, index=table.index)
    memberships = pd.DataFrame(links, columns=["feature_id", "sample", "adduct_group"])

    uf = _UnionFind(list(table.index))
    for _key, grp in memberships.groupby(["sample", "adduct_group"]):
        fids = list(grp["feature_id"].unique())
        for other in fids[1:]:
            uf.union(fids[0], other)

    roots = [uf.find(fid) for fid in table.index]
    numbering = {root: i + 1 for i, root in enumerate(dict.fromkeys(roots))}
    annotations["annotation_group"] = [numbering[r] for r in roots]
    return annotations[ANNOTATION_COLUMNS], memberships


def ion_identity_edges(
    annotations: pd.DataFrame,
    memberships: pd.DataFrame,
    table: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """
    Build GNPS ion identity edges between adducts of the same compound.

    An edge links two features that were placed in the same adduct group
    in at least one sample and carry different adducts. ``Score`` is the
    fraction of samples holding both features in which they shared a
    group.

    Parameters
    ----------
    annotations : pd.DataFrame
        Output of :func:`consensus_annotations`.
    memberships : pd.DataFrame
        Output of :func:`consensus_annotations`.
    table : pd.DataFrame, optional
        Feature table; when given, ``dm/z`` is added to the annotation.

    Returns
    -------
    pd.DataFrame
        Columns ``ID1``, ``ID2``, ``EdgeType``, ``Score``, ``Annotation``.
    """
    columns = ["ID1", "ID2", "EdgeType", "Score", "Annotation"]
    if memberships.empty:
        return pd.DataFrame(columns=columns)

    shared: Counter = Counter()
    for _key, grp in memberships.groupby(["sample", "adduct_group"]):
        for a, b in combinations(sorted(grp["feature_id"].unique()), 2):
            shared[(a, b)] += 1

    present = memberships.groupby("feature_id")["sample"].agg(set)

    rows = []
    for (a, b), n_shared in sorted(shared.items()):
        adduct_a = annotations.at[a, "adduct"]
        adduct_b = annotations.at[b, "adduct"]
        if not adduct_a or not adduct_b or adduct_a == adduct_b:
            continue
        n_both = len(present[a] & present[b])
        annotation = f"{adduct_a} {adduct_b}"
        if table is not None:
            dmz = abs(table.at[a, "mzmed"] - table.at[b, "mzmed"])
            annotation += f" dm/z={dmz:.4f}"
        rows.append(
            {
                "ID1": a,
                "ID2": b,
                "EdgeType": "MS1 annotation",
                "Score": round(n_shared / n_both, 3) if n_both else 0.0,
                "Annotation": annotation,
            }
        )
    logger.info("Built %d ion identity edges", len(rows))
    return pd.DataFrame(rows, columns=columns)
