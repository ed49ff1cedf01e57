"""Weighted 0-100 progress for a hydration run."""

from __future__ import annotations

from typing import Callable

OPERATIONS_PER_BATCH = 4
"""Synthesize, align, map, segment."""

BATCH_PHASE_PERCENT = 70.0
UPLOAD_PHASE_PERCENT = 30.0

# Cumulative share of a batch's progress after each of its operations.
_BATCH_STEP_FRACTIONS = (0.5, 0.7, 0.85, 1.0)


def max_operations(batch_count: int, line_count: int) -> int:
  """Number of operations that completes a run."""
  return batch_count * OPERATIONS_PER_BATCH + line_count


def create_weighted_progress_calculator(
  batch_count: int,
  line_count: int,
) -> Callable[[int], int]:
  """Build a progress function for a run with the given shape.

  The batch phase covers the first 70%: every batch gets an equal share,
  split 50/20/15/15 across its four operations. Uploads cover the remaining
  30%, linear in the number of uploaded lines.

  The returned function is non-decreasing in `completed_operations` and only
  reports 100 once every operation has completed.

  Args:
    batch_count: Number of synthesis batches in the run.
    line_count: Number of lines that will be uploaded.

  Returns:
    A function mapping a completed-operation count to an integer percent.
  """
  total_batch_operations = batch_count * OPERATIONS_PER_BATCH
  total_operations = max_operations(batch_count, line_count)

  def calculate(completed_operations: int) -> int:
    if completed_operations <= 0:
      return 0
    if completed_operations >= total_operations:
      return 100

    if completed_operations <= total_batch_operations:
      per_batch = BATCH_PHASE_PERCENT / batch_count
      completed_batches, step = divmod(completed_operations - 1,
                                       OPERATIONS_PER_BATCH)
      progress = per_batch * (completed_batches + _BATCH_STEP_FRACTIONS[step])
    else:
      uploaded = completed_operations - total_batch_operations
      progress = BATCH_PHASE_PERCENT + (UPLOAD_PHASE_PERCENT * uploaded /
                                        line_count)

    return min(round(progress), 99)

  return calculate
