"""Progress display for batches of QTL-set fits."""

import sys
from collections.abc import Iterable, Iterator

import numpy as np
import progressbar


def format_qtl_set(qtl: np.ndarray) -> str:
    """Compact "chr:pos" rendering of a QTL table, e.g. "1:45,2:10.5"."""
    return ",".join(f"{ch:g}:{pos:g}" for ch, pos in np.atleast_2d(qtl))


def fit_progress(
    qtl_sets: Iterable[np.ndarray], total: int
) -> Iterator[tuple[int, np.ndarray]]:
    """Iterate over QTL sets with a progressbar2 display.

    The bar shows the count, elapsed time and the QTL set currently being
    fitted. It writes to stdout so it interleaves with the loguru console
    sink, and is finished in a finally block so that an exception raised by
    a fit does not leave the terminal line half-drawn.

    Args:
        qtl_sets: QTL tables to iterate over.
        total: Number of QTL sets.

    Yields:
        (index, qtl) pairs.
    """
    widgets = [
        "QTL sets: ",
        progressbar.Counter(),
        f"/{total} ",
        progressbar.Bar(),
        " ",
        progressbar.Timer(),
        " ",
        progressbar.Variable("qtl", width=1),
    ]
    bar = progressbar.ProgressBar(max_value=total, widgets=widgets, fd=sys.stdout)
    bar.start()
    try:
        for i, qtl in enumerate(qtl_sets):
            bar.update(i, qtl=format_qtl_set(qtl))
            yield i, qtl
        bar.update(total)
    finally:
        bar.finish()
