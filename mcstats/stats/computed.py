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

"""Sources of samples.

Accumulators do not consume arrays directly, but any object implementing the
:class:`Computed` interface: a fixed ``size`` and a method ``add_to(out)``
adding the value to a buffer of that size in place. This allows to add
quantities without materialising them in a temporary array first.

Plain python numbers and numpy arrays are wrapped automatically by
:func:`as_computed`.
"""

import abc
import numbers
from functools import singledispatch
from typing import Callable

import numpy as np

from mcstats.errors import SizeMismatchError


class Computed(abc.ABC):
    """Abstract base class of a vector-valued quantity of fixed size."""

    @property
    @abc.abstractmethod
    def size(self) -> int:
        """Number of components of the quantity."""

    @abc.abstractmethod
    def add_to(self, out: np.ndarray):
        """Adds the quantity to the one-dimensional buffer `out` in place.

        Raises:
            SizeMismatchError: if `out` does not have `size` elements.
        """

    def _check_size(self, out):
        if out.shape[0] != self.size:
            raise SizeMismatchError(out.shape[0], self.size)


class ValueAdapter(Computed):
    """A scalar, as a quantity of size 1."""

    def __init__(self, value):
        self._value = value

    @property
    def size(self) -> int:
        return 1

    def add_to(self, out):
        self._check_size(out)
        out[0] += self._value

    def __repr__(self):
        return f"ValueAdapter({self._value!r})"


class ArrayAdapter(Computed):
    """A one-dimensional array or sequence."""

    def __init__(self, values):
        values = np.asarray(values)
        if values.ndim != 1:
            raise ValueError(
                f"Samples must be one-dimensional, but got an array of shape "
                f"{values.shape}."
            )
        self._values = values

    @property
    def size(self) -> int:
        return self._values.shape[0]

    def add_to(self, out):
        self._check_size(out)
        out += self._values

    def __repr__(self):
        return f"ArrayAdapter(size={self.size})"


class CallbackAdapter(Computed):
    """A quantity computed on demand by a function `adder(out)` that adds it
    to the buffer `out` in place.
    """

    def __init__(self, adder: Callable[[np.ndarray], None], size: int):
        self._adder = adder
        self._size = int(size)

    @property
    def size(self) -> int:
        return self._size

    def add_to(self, out):
        self._check_size(out)
        self._adder(out)


@singledispatch
def as_computed(value) -> Computed:
    """
    Wraps `value` into a :class:`Computed` quantity.

    Args:
        value: a :class:`Computed`, a scalar, or a one-dimensional array or
            sequence.

    Returns:
        The corresponding :class:`Computed`.
    """
    raise TypeError(f"Cannot add a value of type {type(value)} to an accumulator.")


@as_computed.register(Computed)
def _as_computed_computed(value):
    return value


@as_computed.register(numbers.Number)
@as_computed.register(np.number)
def _as_computed_scalar(value):
    return ValueAdapter(value)


@as_computed.register(np.ndarray)
@as_computed.register(list)
@as_computed.register(tuple)
def _as_computed_array(value):
    if np.ndim(value) == 0:
        return ValueAdapter(np.asarray(value).item())
    return ArrayAdapter(value)
