"""知覚色距離メトリクス。

OKLab 重み付き / OKLab HK補正 / CIEDE2000 / Jzazbz の4種。
いずれも非負・対称で、同一入力に対して0を返す。
知覚重み付きの変種は三角不等式を満たさない（意図した挙動）。
"""

from __future__ import annotations

import math

from emoji_mosaic.domain.color import LAB, Jzazbz, OKLab, ciede2000, linear_to_jzazbz
from emoji_mosaic.domain.image_model import ColorMetric
from emoji_mosaic.domain.palette import ColorProjection

# OKLab 重み付き: 低彩度ペアほど明度差を重視
OKLAB_LIGHTNESS_WEIGHT = 1.6
OKLAB_NEUTRAL_LIGHTNESS_BOOST = 0.4
OKLAB_HUE_WEIGHT = 0.25

# HK補正 (Helmholtz-Kohlrausch)
HK_COEFFICIENT = 0.015
HK_WEIGHT_L = 1.0
HK_WEIGHT_C = 1.0
HK_WEIGHT_H = 0.5

# CIEDE2000 (ΔE00=1 が OKLab 距離 0.01 程度になるよう縮尺)
CIEDE2000_SCALE = 0.01

# Jzazbz: 白の Jz で正規化して OKLab と同程度の尺度にする
JZAZBZ_WHITE_JZ = linear_to_jzazbz((1.0, 1.0, 1.0)).jz
JZAZBZ_LIGHTNESS_WEIGHT = 1.6
JZAZBZ_NEUTRAL_LIGHTNESS_BOOST = 0.4


def _hue_difference_sq(da: float, db: float, dc: float) -> float:
    """色相差の二乗 ΔH² = Δa² + Δb² - ΔC²（負値は0にクランプ）。"""
    return max(0.0, da * da + db * db - dc * dc)


def oklab_weighted_distance(lab1: OKLab, lab2: OKLab) -> float:
    """OKLab 重み付き距離。

    明度重み 1.6 + 0.4·exp(-3·平均彩度) でニュートラル付近の明度一致を優先し、
    色相差項 max(0, Δa²+Δb²-ΔC²)·0.25 を加える。
    """
    c1 = lab1.chroma
    c2 = lab2.chroma
    avg_chroma = (c1 + c2) / 2.0
    w_l = OKLAB_LIGHTNESS_WEIGHT + OKLAB_NEUTRAL_LIGHTNESS_BOOST * math.exp(-3.0 * avg_chroma)

    dl = (lab1.l - lab2.l) * w_l
    da = lab1.a - lab2.a
    db = lab1.b - lab2.b
    hue = _hue_difference_sq(da, db, c1 - c2) * OKLAB_HUE_WEIGHT
    return math.sqrt(dl * dl + da * da + db * db + hue)


def _hk_lightness(lab: OKLab) -> float:
    """HK効果を補正した明度。高彩度色ほど明るく見える分を加算。"""
    c = lab.chroma
    hue = math.atan2(lab.b, lab.a)
    return lab.l + HK_COEFFICIENT * c * (0.12 + 0.06 * math.cos(hue + 0.8))


def oklab_hk_distance(lab1: OKLab, lab2: OKLab) -> float:
    """HK補正した明度を使う LCh 分解の重み付き距離。"""
    c1 = lab1.chroma
    c2 = lab2.chroma
    dl = _hk_lightness(lab1) - _hk_lightness(lab2)
    dc = c1 - c2
    dh_sq = _hue_difference_sq(lab1.a - lab2.a, lab1.b - lab2.b, dc)
    return math.sqrt(
        (HK_WEIGHT_L * dl) ** 2
        + (HK_WEIGHT_C * dc) ** 2
        + HK_WEIGHT_H * HK_WEIGHT_H * dh_sq
    )


def ciede2000_distance(lab1: LAB, lab2: LAB) -> float:
    """CIEDE2000 を OKLab 距離と同程度の尺度に縮めた値。"""
    return ciede2000(lab1, lab2) * CIEDE2000_SCALE


def jzazbz_distance(jab1: Jzazbz, jab2: Jzazbz) -> float:
    """Jzazbz 距離。az/bz のユークリッド距離＋彩度適応の明度重み。"""
    avg_chroma = (jab1.chroma + jab2.chroma) / 2.0 / JZAZBZ_WHITE_JZ
    w_j = JZAZBZ_LIGHTNESS_WEIGHT + JZAZBZ_NEUTRAL_LIGHTNESS_BOOST * math.exp(-3.0 * avg_chroma)
    dj = (jab1.jz - jab2.jz) * w_j
    da = jab1.az - jab2.az
    db = jab1.bz - jab2.bz
    return math.sqrt(dj * dj + da * da + db * db) / JZAZBZ_WHITE_JZ


def color_distance(p1: ColorProjection, p2: ColorProjection, metric: ColorMetric) -> float:
    """射影済みの2色間の距離をメトリクスに応じて計算。

    CIEDE2000 / Jzazbz は対応する射影が無い場合 ValueError。
    """
    if metric is ColorMetric.OKLAB:
        return oklab_weighted_distance(p1.oklab, p2.oklab)
    if metric is ColorMetric.OKLAB_HK:
        return oklab_hk_distance(p1.oklab, p2.oklab)
    if metric is ColorMetric.CIEDE2000:
        if p1.cielab is None or p2.cielab is None:
            raise ValueError("CIEDE2000 requires CIE L*a*b* projections")
        return ciede2000_distance(p1.cielab, p2.cielab)
    if p1.jzazbz is None or p2.jzazbz is None:
        raise ValueError("Jzazbz distance requires Jzazbz projections")
    return jzazbz_distance(p1.jzazbz, p2.jzazbz)
