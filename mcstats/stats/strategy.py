# Copyright 2024 The mcstats Authors - All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Variance strategies.

A strategy fixes how the second moments of a given element type are formed.
For real data there is only one sensible choice, while for complex data two
conventions are in common use:

- :class:`CircularVar` assumes the fluctuations are isotropic in the complex
  plane. The variance is the real number :math:`\\langle |z - \\bar z|^2 \\rangle`,
  and the covariance matrix is the hermitian matrix
  :math:`\\langle (z_i - \\bar z_i) (z_j - \\bar z_j)^* \\rangle`.
- :class:`EllipticVar` treats a complex number as the real vector
  :math:`(\\mathrm{Re}\\, z, \\mathrm{Im}\\, z)`. Every second moment is a real
  2x2 block, so the variances of the real and imaginary parts are kept
  separately.

The circular variance is the trace of the elliptic 2x2 block.

The formulas are multiple-dispatched on the type of the strategy. The shapes
of the buffers for vectors of size ``k`` are:

============  ===========  ===================  ====================  ===============
strategy      dtype        variance buffer      covariance buffer     variance column
============  ===========  ===================  ====================  ===============
RealVar       float64      ``(k,)``             ``(k, k)``            ``(k,)``
CircularVar   complex128   ``(k,)`` real        ``(k, k)`` complex    ``(k,)``
EllipticVar   complex128   ``(k, 2, 2)`` real   ``(k, k, 2, 2)`` real ``(k, 2)``
============  ===========  ===================  ====================  ===============
"""

from dataclasses import dataclass

import numpy as np

from plum import Dispatcher

dispatch = Dispatcher()


@dataclass(frozen=True)
class Strategy:
    """Base class of all variance strategies."""

    dtype = np.float64
    """Data type of the samples and of the means."""

    var_dtype = np.float64
    """Data type of the variance buffer."""

    cov_dtype = np.float64
    """Data type of the covariance buffer."""

    def var_shape(self, size: int) -> tuple[int, ...]:
        return (size,)

    def cov_shape(self, size: int) -> tuple[int, ...]:
        return (size, size)

    def column_shape(self, size: int) -> tuple[int, ...]:
        return (size,)

    def __repr__(self):
        return f"{type(self).__name__}()"


@dataclass(frozen=True)
class RealVar(Strategy):
    """Plain variance of real-valued data."""


@dataclass(frozen=True)
class CircularVar(Strategy):
    """Circular (isotropic) variance of complex-valued data."""

    dtype = np.complex128
    cov_dtype = np.complex128


@dataclass(frozen=True)
class EllipticVar(Strategy):
    """Elliptic variance of complex-valued data, which keeps the real and
    imaginary fluctuations apart."""

    dtype = np.complex128

    def var_shape(self, size: int) -> tuple[int, ...]:
        return (size, 2, 2)

    def cov_shape(self, size: int) -> tuple[int, ...]:
        return (size, size, 2, 2)

    def column_shape(self, size: int) -> tuple[int, ...]:
        return (size, 2)


def _realify(x):
    return np.stack((x.real, x.imag), axis=-1)


@dispatch
def outer(strategy: RealVar, x, y):
    """Outer product contribution of ``x`` and ``y`` to a covariance buffer."""
    return np.outer(x, y)


@dispatch
def outer(strategy: CircularVar, x, y):  # noqa: F811
    return np.outer(x, np.conj(y))


@dispatch
def outer(strategy: EllipticVar, x, y):  # noqa: F811
    return np.einsum("ia,jb->ijab", _realify(x), _realify(y))


@dispatch
def elementwise(strategy: RealVar, x, y):
    """Diagonal of :func:`outer`, the contribution to a variance buffer."""
    return x * y


@dispatch
def elementwise(strategy: CircularVar, x, y):  # noqa: F811
    return (x * np.conj(y)).real


@dispatch
def elementwise(strategy: EllipticVar, x, y):  # noqa: F811
    return np.einsum("ia,ib->iab", _realify(x), _realify(y))


@dispatch
def cov_diagonal(strategy: RealVar, cov):
    """Extracts the variance buffer from a covariance buffer."""
    return np.diagonal(cov).copy()


@dispatch
def cov_diagonal(strategy: CircularVar, cov):  # noqa: F811
    return np.diagonal(cov).real.copy()


@dispatch
def cov_diagonal(strategy: EllipticVar, cov):  # noqa: F811
    return np.einsum("iiab->iab", cov).copy()


@dispatch
def var_column(strategy: RealVar, var):
    """Real-valued variance column of a variance buffer."""
    return var


@dispatch
def var_column(strategy: CircularVar, var):  # noqa: F811
    return var


@dispatch
def var_column(strategy: EllipticVar, var):  # noqa: F811
    return np.einsum("iaa->ia", var)


def as_strategy(strategy) -> Strategy:
    """Returns the strategy instance corresponding to ``strategy``, which can
    be an instance, a strategy class, or None (for :class:`RealVar`)."""
    if strategy is None:
        return RealVar()
    if isinstance(strategy, type) and issubclass(strategy, Strategy):
        return strategy()
    if isinstance(strategy, Strategy):
        return strategy
    raise TypeError(f"Unknown variance strategy {strategy!r}.")
