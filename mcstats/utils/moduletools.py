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

"""Helpers keeping the public namespace of the mcstats packages tidy."""

import pkgutil
import sys


def _hide_submodules(module_name, *, remove_self=True, ignore=tuple()):
    """
    Renames the file submodules of the package `module_name` to private
    names (`stats.mean` becomes `stats._mean`), so that only the names
    imported by the `__init__.py` of the package are public, then fills
    `__all__`.

    Args:
        module_name: the name of the package, usually `__name__`.
        remove_self: also remove `_hide_submodules` from the package.
        ignore: submodules to keep public.
    """
    package = sys.modules[module_name]

    for info in pkgutil.iter_modules(package.__path__):
        name = info.name
        if info.ispkg or name.startswith("_") or name in ignore:
            continue
        submodule = package.__dict__.get(name)
        if submodule is None or getattr(submodule, "__name__", None) != (
            f"{module_name}.{name}"
        ):
            # the name is taken by an object exported from the submodule
            continue
        setattr(package, "_" + name, submodule)
        delattr(package, name)

    if remove_self and "_hide_submodules" in package.__dict__:
        delattr(package, "_hide_submodules")

    auto_export(package)


def auto_export(module):
    """
    Appends all public names of `module` to its `__all__`, creating it if
    needed.

    Args:
        module: a module or module name
    """
    if isinstance(module, str):
        module = sys.modules[module]

    exported = module.__dict__.setdefault("__all__", [])
    for name in dir(module):
        if not name.startswith("_") and name not in exported:
            exported.append(name)
