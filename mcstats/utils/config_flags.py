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

"""Global configuration flags of mcstats.

Every flag is read from the environment variable of the same name when
mcstats is imported. Flags declared with `runtime=True` can also be changed
afterwards, either with :meth:`Config.update` or by attribute assignment on
the lowercase name::

    mcstats.config.mcstats_autocorr_min_samples = 64
"""

import os
from dataclasses import dataclass
from textwrap import dedent
from types import MappingProxyType
from typing import Any, Callable

_TRUE_STRINGS = ("y", "yes", "t", "true", "on", "1")
_FALSE_STRINGS = ("n", "no", "f", "false", "off", "0")


def _parse_bool(varname: str, text: str) -> bool:
    text = text.lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ValueError(f"invalid truth value {text!r} for environment {varname!r}")


def _parse_int(varname: str, text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(
            f"invalid integer {text!r} for environment {varname!r}"
        ) from None


_PARSERS = {bool: _parse_bool, int: _parse_int}


def read_env(varname: str, type, default):
    """Reads the environment variable `varname` as a value of `type` (bool or
    int), returning `default` if it is not set."""
    if type not in _PARSERS:
        raise TypeError(f"Unknown flag type {type}")
    text = os.environ.get(varname)
    if text is None:
        return type(default)
    return _PARSERS[type](varname, text)


@dataclass
class _Flag:
    type: type
    help: str
    runtime: bool
    callback: Callable[[Any], None] | None


class Config:
    """Registry of the configuration flags."""

    def __init__(self):
        object.__setattr__(self, "_flags", {})
        object.__setattr__(self, "_values", {})
        object.__setattr__(self, "_readonly", MappingProxyType(self._values))

    def define(self, name, type, default, *, help, runtime=False, callback=None):
        """
        Defines a new flag, reading its value from the environment.

        Args:
            name: the flag name, an uppercase string like "MCSTATS_XXX"
            type: the type of the flag, bool or int
            default: value used when the environment variable is not set
            help: a description of the flag
            runtime: whether the flag can be changed after import
            callback: an optional function validating (or reacting to) every
                new value, including the initial one
        """
        if name in self._flags:
            raise KeyError(f"Flag {name} already defined.")

        value = read_env(name, type, default)
        if callback is not None:
            callback(value)

        self._flags[name] = _Flag(type, dedent(help).strip(), runtime, callback)
        self._values[name] = value

    @property
    def FLAGS(self):
        """
        Read-only mapping from the flag names to their current values
        """
        return self._readonly

    def help(self, name: str) -> str:
        """Returns the description of the flag `name`."""
        return self._flags[name.upper()].help

    def update(self, name, value):
        """
        Changes the value of a runtime flag.

        Args:
            name: the name of the flag (case insensitive)
            value: the new value

        Raises:
            RuntimeError: if the flag can only be set through the environment.
            TypeError: if `value` has the wrong type.
        """
        name = name.upper()
        flag = self._flags[name]

        if not flag.runtime:
            raise RuntimeError(
                dedent(
                    f"""
                    Flag `{name}` can only be set through an environment variable
                    before importing mcstats, for example by launching python with

                        {name}={self._values[name]} python
                    """
                )
            )

        # bool is a subclass of int, but a flag of type int must not be a bool
        if not isinstance(value, flag.type) or (
            flag.type is int and isinstance(value, bool)
        ):
            raise TypeError(
                f"Configuration {name} must be a {flag.type.__name__}, but the "
                f"value {value!r} is a {type(value).__name__}."
            )

        if flag.callback is not None:
            flag.callback(value)
        self._values[name] = value

    def __repr__(self):
        lines = [f" - {name} = {value}" for name, value in self._values.items()]
        return "\n".join(["", "Global configurations for mcstats", *lines, ""])

    def __dir__(self):
        return [name.lower() for name in self._values]

    def __getattr__(self, name: str) -> Any:
        if name == name.lower() and name.upper() in self._values:
            return self._values[name.upper()]
        raise AttributeError(f"'Config' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name == name.lower() and name.upper() in self._values:
            self.update(name, value)
        else:
            super().__setattr__(name, value)


def _check_min_samples(value):
    if value < 2:
        raise ValueError(
            "MCSTATS_AUTOCORR_MIN_SAMPLES must be at least 2, as a variance "
            f"cannot be estimated from {value} samples."
        )


config = Config()
FLAGS = config.FLAGS

config.define(
    "MCSTATS_DEBUG",
    bool,
    default=False,
    help="Enable debug logging in the accumulators and reducers.",
    runtime=True,
)

config.define(
    "MCSTATS_AUTOCORR_MIN_SAMPLES",
    int,
    default=256,
    help="""
        Minimum number of binned samples a level of the binning hierarchy must
        hold for it to be used when estimating the integrated autocorrelation
        time and the corrected standard error. The coarsest level holding at
        least this many samples is selected.
        """,
    runtime=True,
    callback=_check_min_samples,
)

config.define(
    "MCSTATS_MPI_WARNING",
    bool,
    default=True,
    help="""
        Raise a warning when running python under MPI without mpi4py
        installed. Disable to silence it.
        """,
    runtime=False,
)
