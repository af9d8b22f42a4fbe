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

# Use an empty top-level docstring so Sphinx won't output the one below.
""""""

from textwrap import dedent as _dedent

"""mcstats error classes.

=== When to create an mcstats error class?

If an error message requires more explanation than a one-liner, it is useful to
add it as a separate error class, so that users get more help when they are
debugging a problem. Errors that callers may want to catch together with the
corresponding builtin exception also inherit from it (e.g. `SizeMismatchError`
is a `ValueError`).

=== Copy/pastable template for new error messages:

class Template(McstatsError):
  "" "

  "" "
  def __init__(self):
    super().__init__(f'')
"""


class McstatsError(Exception):
    def __init__(self, message):
        module_name = self.__class__.__module__
        class_name = self.__class__.__name__
        error_msg = (
            f"{_dedent(message)}"
            f"\n"
            f"\n-------------------------------------------------------"
            f"\n"
            f"For more detailed informations, read the documentation of"
            f"\n\t {module_name}.{class_name}"
            f"\n-------------------------------------------------------"
            f"\n"
        )
        super().__init__(error_msg)


#################################################
# Accumulator errors                            #
#################################################


class FinalizedAccumulatorError(McstatsError):
    """Illegal attempt to use an accumulator or a result whose data has been
    released.

    Accumulators hand over their storage to the result returned by
    :meth:`finalize`, after which they cannot be used anymore, until
    :meth:`reset` is called on them. In the same way, the results held by
    all MPI ranks (or worker threads) other than the root are emptied by a
    reduction, because only the root holds the merged statistics.

    If you need the statistics accumulated so far while continuing to add
    samples, use :meth:`result` instead of :meth:`finalize`, which returns an
    independent copy and leaves the accumulator untouched.

    This error always signals a bug in the calling code.
    """

    def __init__(self, obj=None):
        name = type(obj).__name__ if obj is not None else "accumulator"
        super().__init__(
            f"""
            Attempted to use a {name} whose data has already been released.

            Accumulators become invalid after `finalize()` has been called on
            them, and results become invalid on non-root workers after a
            reduction. Call `reset()` on an accumulator to start again.
            """
        )


class SizeMismatchError(McstatsError, ValueError):
    """The length of a sample does not match the size of the accumulator it is
    added to.

    Every accumulator is constructed for vector-valued samples of a fixed
    length `size`, which cannot change during its lifetime. Scalars count as
    vectors of size 1.

    This error always signals a bug in the calling code.
    """

    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(
            f"""
            Size mismatch: expected a sample of size {expected}, but got one of
            size {got}.
            """
        )


class LevelOutOfRangeError(McstatsError, IndexError):
    """No level of a binning hierarchy holds enough samples for a reliable
    estimate.

    The integrated autocorrelation time and the corrected standard error are
    read off the coarsest level of the binning hierarchy which still holds at
    least `min_samples` binned samples. When even the finest level holds
    fewer samples, there is not enough data for a reliable estimate.

    This error is recoverable: you can either accumulate more data, lower the
    threshold by passing `min_samples` explicitly (or by setting the flag
    `MCSTATS_AUTOCORR_MIN_SAMPLES`), or fall back to the naive (uncorrected)
    estimate of level 0, which is accessible as `result.level(0)`.
    """

    def __init__(self, min_samples: int, counts):
        self.min_samples = min_samples
        self.counts = tuple(counts)
        super().__init__(
            f"""
            No level holds at least {min_samples} samples (level counts:
            {list(self.counts)}).

            Accumulate more data, request a smaller `min_samples`, or fall back
            to the uncorrected statistics of `result.level(0)`.
            """
        )


#################################################
# Reduction errors                              #
#################################################


class ReductionFailedError(McstatsError, RuntimeError):
    """The collective sum-reduction of a result failed in the transport.

    Reductions are collective operations: every participant must take part
    in the same sequence of reductions. When the transport fails, the
    results that were being reduced are restored to their state before the
    reduction and are never left partially reduced. A retry is only possible
    if all participants agree to retry the whole collective operation.
    """

    def __init__(self, reason: str = ""):
        super().__init__(
            f"""
            The collective reduction failed{": " + reason if reason else "."}

            All participants of a reduction must call it, in the same order.
            """
        )
