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

"""Building blocks shared by all accumulators and results."""

import math

import numpy as np

from mcstats.errors import FinalizedAccumulatorError


def check_valid(obj):
    """Raises :class:`~mcstats.errors.FinalizedAccumulatorError` if `obj` has
    released its data."""
    if not obj.valid:
        raise FinalizedAccumulatorError(obj)


def join_path(path: str, key: str) -> str:
    return f"{path}/{key}" if path else key


class Bundle:
    """Partial sum of the samples of a batch which is not complete yet."""

    def __init__(self, size: int, batch_size: int, dtype):
        self.sum = np.zeros(size, dtype=dtype)
        self.count = 0
        self.batch_size = batch_size

    @property
    def is_full(self) -> bool:
        return self.count >= self.batch_size

    def mean(self):
        return self.sum / self.count

    def reset(self):
        self.sum.fill(0)
        self.count = 0


def _format_main_string(value, std, var, count):
    if not math.isfinite(abs(value)) or not math.isfinite(std):
        return f"{value:.2e} ± {std:.2e} [σ²={var:.1e}, N={count}"

    elif std == 0.0:
        return f"{value:.3e} [σ²={var:.1e}, N={count}"

    elif (abs(value) + abs(std) < 1e-2) or abs(std) <= 1e-7:
        value_std_str = _format_scientific_notation(value, std)
        return value_std_str + f" [σ²={var:.1e}, N={count}"

    else:
        if std < 1e-15:
            decimals = 15
        else:
            decimals = max(int(np.ceil(-np.log10(std))), 0) + 1
        return f"{value:.{decimals}f} ± {std:.{decimals}f} [σ²={var:.1e}, N={count}"


def _format_scientific_notation(value, std):
    length = 5

    exponent_val = int(np.floor(np.log10(np.abs(value)))) if value != 0 else 0
    exponent_std = int(np.floor(np.log10(std)))
    n_digits = max(exponent_val - exponent_std, 0) + 1

    mantissa_val = value / 10**exponent_val
    mantissa_std = std / 10**exponent_val

    mantissa_str = (
        f"{mantissa_val:.{n_digits}f}".rjust(length)
        + " ± "
        + f"{mantissa_std:.{n_digits}f}".rjust(length)
    )

    return mantissa_str + f" e{exponent_val:+03d}"


def format_result(name, mean, stderror, var, count, extra=""):
    """Formats a result as `name(value ± error [σ²=..., N=...])` if it holds a
    single real number, and as `name(size=..., count=...)` otherwise."""
    if mean.shape == (1,) and np.isrealobj(mean) and np.shape(var) == (1,):
        main = _format_main_string(
            float(mean[0]), float(stderror[0]), float(var[0]), count
        )
        return f"{name}({main}{extra}])"
    return f"{name}(size={mean.shape[0]}, count={count})"


def maybe_item(x):
    """Returns a python scalar for single-component arrays."""
    x = np.asarray(x)
    if x.size == 1:
        return x.item()
    return x
