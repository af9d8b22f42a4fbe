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

"""Hierarchical key-value stores used to serialize results.

Paths are `/`-separated strings. A path holding an array is a *data* path,
and every proper prefix of a data path is a *group*.
"""

import abc

import numpy as np


class AbstractArchive(abc.ABC):
    """Interface of the stores accepted by the `serialize` and `deserialize`
    methods of results."""

    @abc.abstractmethod
    def write(self, path: str, value):
        """Stores `value` at `path`, replacing any previous value."""

    @abc.abstractmethod
    def read(self, path: str) -> np.ndarray:
        """Returns the value stored at `path`.

        Raises:
            KeyError: if no value is stored at `path`.
        """

    @abc.abstractmethod
    def is_data(self, path: str) -> bool:
        """Whether a value is stored at `path`."""

    @abc.abstractmethod
    def is_group(self, path: str) -> bool:
        """Whether `path` is a prefix of some data path."""


class DictArchive(AbstractArchive):
    """In-memory archive backed by an ordered dictionary.

    Values are copied on write and on read, so that the archive never shares
    memory with the results.
    """

    def __init__(self):
        self._data = {}

    def write(self, path, value):
        self._data[path] = np.array(value, copy=True)

    def read(self, path):
        try:
            return self._data[path].copy()
        except KeyError:
            raise KeyError(f"No data stored at path '{path}'.") from None

    def is_data(self, path):
        return path in self._data

    def is_group(self, path):
        prefix = path.rstrip("/") + "/" if path else ""
        return any(key.startswith(prefix) for key in self._data)

    def keys(self) -> list[str]:
        """The data paths, in the order in which they were first written."""
        return list(self._data)

    def __len__(self):
        return len(self._data)

    def __repr__(self):
        return f"DictArchive(n_entries={len(self._data)})"
