"""色の値型と色空間変換。

sRGB / リニアRGB / OKLab / CIE L*a*b* / Jzazbz のスカラー変換と CIEDE2000。
Pure Pythonで実装（外部ライブラリ依存なし）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass

Linear = tuple[float, float, float]
"""リニアRGB (各チャンネル 0.0-1.0)"""


@dataclass(frozen=True)
class RGB:
    """RGB色空間の色。各チャンネル 0-255。"""

    r: int
    g: int
    b: int

    def to_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


@dataclass(frozen=True)
class LAB:
    """CIE L*a*b* 色空間の色。"""

    l: float  # noqa: E741
    a: float
    b: float


@dataclass(frozen=True)
class OKLab:
    """OKLab 色空間の色 (Ottosson)。"""

    l: float  # noqa: E741
    a: float
    b: float

    @property
    def chroma(self) -> float:
        return math.sqrt(self.a * self.a + self.b * self.b)


@dataclass(frozen=True)
class Jzazbz:
    """Jzazbz 色空間の色 (Safdar et al., 2017)。"""

    jz: float
    az: float
    bz: float

    @property
    def chroma(self) -> float:
        return math.sqrt(self.az * self.az + self.bz * self.bz)


# --- sRGB ↔ リニアRGB ---


def srgb_to_linear(v: float) -> float:
    """sRGB値(0.0-1.0)をリニアRGBに変換。"""
    if v <= 0.04045:
        return v / 12.92
    return ((v + 0.055) / 1.055) ** 2.4


def linear_to_srgb(v: float) -> float:
    """リニアRGB値(0.0-1.0)をsRGBに変換。"""
    if v <= 0.0031308:
        return 12.92 * v
    return 1.055 * v ** (1.0 / 2.4) - 0.055


def srgb8_to_linear(c: int) -> float:
    """sRGBコンポーネント(0-255)をリニアRGBに変換。"""
    return srgb_to_linear(c / 255.0)


def linear_to_srgb8(v: float) -> int:
    """リニアRGB値を8bit sRGBに変換。範囲外は0-255にクランプ。"""
    v = max(0.0, min(1.0, v))
    return max(0, min(255, round(linear_to_srgb(v) * 255.0)))


def rgb_to_linear(color: RGB) -> Linear:
    return (srgb8_to_linear(color.r), srgb8_to_linear(color.g), srgb8_to_linear(color.b))


def linear_to_rgb(lin: Linear) -> RGB:
    return RGB(linear_to_srgb8(lin[0]), linear_to_srgb8(lin[1]), linear_to_srgb8(lin[2]))


def clamp_linear(lin: Linear) -> Linear:
    """リニアRGBを [0, 1] にクランプ。"""
    r, g, b = lin
    return (
        0.0 if r < 0.0 else 1.0 if r > 1.0 else r,
        0.0 if g < 0.0 else 1.0 if g > 1.0 else g,
        0.0 if b < 0.0 else 1.0 if b > 1.0 else b,
    )


# --- リニアRGB → OKLab ---


def linear_to_oklab(lin: Linear) -> OKLab:
    """リニアRGBをOKLabに変換。

    3x3行列 → 立方根 → 3x3行列 (Björn Ottosson, 2020)。
    """
    r, g, b = lin

    l_ = math.cbrt(0.4122214708 * r + 0.5363325363 * g + 0.0514459929 * b)
    m_ = math.cbrt(0.2119034982 * r + 0.6806995451 * g + 0.1073969566 * b)
    s_ = math.cbrt(0.0883024619 * r + 0.2817188376 * g + 0.6299787005 * b)

    return OKLab(
        0.2104542553 * l_ + 0.7936177850 * m_ - 0.0040720468 * s_,
        1.9779984951 * l_ - 2.4285922050 * m_ + 0.4505937099 * s_,
        0.0259040371 * l_ + 0.7827717662 * m_ - 0.8086757660 * s_,
    )


# --- リニアRGB → XYZ → L*a*b* ---

# D65 白色点
_XN, _YN, _ZN = 0.95047, 1.00000, 1.08883

_LAB_EPSILON = 216.0 / 24389.0
_LAB_KAPPA = 24389.0 / 27.0


def linear_to_xyz(lin: Linear) -> tuple[float, float, float]:
    """リニアRGBをCIE XYZ (D65, Y=1で白) に変換。"""
    r, g, b = lin
    x = 0.4124564 * r + 0.3575761 * g + 0.1804375 * b
    y = 0.2126729 * r + 0.7151522 * g + 0.0721750 * b
    z = 0.0193339 * r + 0.1191920 * g + 0.9503041 * b
    return (x, y, z)


def _lab_f(t: float) -> float:
    """LAB変換の補助関数。"""
    if t > _LAB_EPSILON:
        return math.cbrt(t)
    return (_LAB_KAPPA * t + 16.0) / 116.0


def linear_to_cielab(lin: Linear) -> LAB:
    """リニアRGBをCIE L*a*b*に変換。D65光源基準。"""
    x, y, z = linear_to_xyz(lin)

    fx = _lab_f(x / _XN)
    fy = _lab_f(y / _YN)
    fz = _lab_f(z / _ZN)

    return LAB(116.0 * fy - 16.0, 500.0 * (fx - fy), 200.0 * (fy - fz))


def rgb_to_lab(color: RGB) -> LAB:
    """RGB色をCIE L*a*b*に変換。D65光源基準。"""
    return linear_to_cielab(rgb_to_linear(color))


# --- リニアRGB → Jzazbz ---

# 基準白 203 cd/m² (ITU-R BT.2408)
JZAZBZ_REFERENCE_WHITE = 203.0

_JZ_B = 1.15
_JZ_G = 0.66
_JZ_C1 = 3424.0 / 4096.0
_JZ_C2 = 2413.0 / 128.0
_JZ_C3 = 2392.0 / 128.0
_JZ_N = 2610.0 / 16384.0
_JZ_P = 1.7 * 2523.0 / 32.0
_JZ_D = -0.56
_JZ_D0 = 1.6295499532821566e-11


def _jz_pq(v: float) -> float:
    """PQ 風の伝達関数。"""
    vn = max(v, 0.0) / 10000.0
    vp = vn ** _JZ_N
    return ((_JZ_C1 + _JZ_C2 * vp) / (1.0 + _JZ_C3 * vp)) ** _JZ_P


def linear_to_jzazbz(lin: Linear) -> Jzazbz:
    """リニアRGBをJzazbzに変換。

    XYZ を基準白 203 cd/m² の絶対輝度にスケールしてから Iz/az/bz を求める。
    """
    x, y, z = linear_to_xyz(lin)
    x *= JZAZBZ_REFERENCE_WHITE
    y *= JZAZBZ_REFERENCE_WHITE
    z *= JZAZBZ_REFERENCE_WHITE

    xp = _JZ_B * x - (_JZ_B - 1.0) * z
    yp = _JZ_G * y - (_JZ_G - 1.0) * x

    lp = _jz_pq(0.41478972 * xp + 0.579999 * yp + 0.0146480 * z)
    mp = _jz_pq(-0.2015100 * xp + 1.120649 * yp + 0.0531008 * z)
    sp = _jz_pq(-0.0166008 * xp + 0.264800 * yp + 0.6684799 * z)

    iz = 0.5 * (lp + mp)
    az = 3.524000 * lp - 4.066708 * mp + 0.542708 * sp
    bz = 0.199076 * lp + 1.096799 * mp - 1.295875 * sp
    jz = (1.0 + _JZ_D) * iz / (1.0 + _JZ_D * iz) - _JZ_D0

    return Jzazbz(jz, az, bz)


# --- 色距離計算（CIEDE2000） ---


def ciede2000(lab1: LAB, lab2: LAB) -> float:
    """CIEDE2000色差を計算。

    参考: "The CIEDE2000 Color-Difference Formula" (Sharma et al., 2005)
    """
    l1, a1, b1 = lab1.l, lab1.a, lab1.b
    l2, a2, b2 = lab2.l, lab2.a, lab2.b

    c1_ab = math.sqrt(a1**2 + b1**2)
    c2_ab = math.sqrt(a2**2 + b2**2)
    c_ab_mean = (c1_ab + c2_ab) / 2.0

    c_ab_mean_7 = c_ab_mean**7
    g = 0.5 * (1.0 - math.sqrt(c_ab_mean_7 / (c_ab_mean_7 + 25.0**7)))

    a1_prime = a1 * (1.0 + g)
    a2_prime = a2 * (1.0 + g)

    c1_prime = math.sqrt(a1_prime**2 + b1**2)
    c2_prime = math.sqrt(a2_prime**2 + b2**2)

    h1_prime = math.degrees(math.atan2(b1, a1_prime)) % 360.0
    h2_prime = math.degrees(math.atan2(b2, a2_prime)) % 360.0

    # Delta値
    delta_l_prime = l2 - l1
    delta_c_prime = c2_prime - c1_prime

    if c1_prime * c2_prime == 0.0:
        delta_h_prime = 0.0
    elif abs(h2_prime - h1_prime) <= 180.0:
        delta_h_prime = h2_prime - h1_prime
    elif h2_prime - h1_prime > 180.0:
        delta_h_prime = h2_prime - h1_prime - 360.0
    else:
        delta_h_prime = h2_prime - h1_prime + 360.0

    delta_H_prime = 2.0 * math.sqrt(c1_prime * c2_prime) * math.sin(
        math.radians(delta_h_prime / 2.0)
    )

    l_prime_mean = (l1 + l2) / 2.0
    c_prime_mean = (c1_prime + c2_prime) / 2.0

    if c1_prime * c2_prime == 0.0:
        h_prime_mean = h1_prime + h2_prime
    elif abs(h1_prime - h2_prime) <= 180.0:
        h_prime_mean = (h1_prime + h2_prime) / 2.0
    elif h1_prime + h2_prime < 360.0:
        h_prime_mean = (h1_prime + h2_prime + 360.0) / 2.0
    else:
        h_prime_mean = (h1_prime + h2_prime - 360.0) / 2.0

    t = (
        1.0
        - 0.17 * math.cos(math.radians(h_prime_mean - 30.0))
        + 0.24 * math.cos(math.radians(2.0 * h_prime_mean))
        + 0.32 * math.cos(math.radians(3.0 * h_prime_mean + 6.0))
        - 0.20 * math.cos(math.radians(4.0 * h_prime_mean - 63.0))
    )

    sl = 1.0 + 0.015 * (l_prime_mean - 50.0) ** 2 / math.sqrt(
        20.0 + (l_prime_mean - 50.0) ** 2
    )
    sc = 1.0 + 0.045 * c_prime_mean
    sh = 1.0 + 0.015 * c_prime_mean * t

    c_prime_mean_7 = c_prime_mean**7
    rc = 2.0 * math.sqrt(c_prime_mean_7 / (c_prime_mean_7 + 25.0**7))
    delta_theta = 30.0 * math.exp(
        -(((h_prime_mean - 275.0) / 25.0) ** 2)
    )
    rt = -math.sin(math.radians(2.0 * delta_theta)) * rc

    # 丸め誤差で負になる場合があるためクランプ
    return math.sqrt(max(
        0.0,
        (delta_l_prime / sl) ** 2
        + (delta_c_prime / sc) ** 2
        + (delta_H_prime / sh) ** 2
        + rt * (delta_c_prime / sc) * (delta_H_prime / sh),
    ))
