"""Two-segment progress scale: parsing fills 0-30%, ETL fills 30-100%."""

from dataclasses import replace

from importer_340b.ingest.loaders import ProgressCallback
from importer_340b.models import ImportProgress, ProgressStatus

PARSE_SEGMENT = (0, 30)
ETL_SEGMENT = (30, 100)


def scale_progress(
    callback: ProgressCallback | None, segment: tuple[int, int]
) -> ProgressCallback | None:
    """Wrap ``callback`` so a phase's 0-100% lands inside ``segment``.

    A phase that reports ``complete`` before the end of the overall scale is
    relabelled ``parsing`` so the caller only sees ``complete`` once.
    """
    if callback is None:
        return None
    low, high = segment

    def scaled(progress: ImportProgress) -> None:
        percentage = min(max(progress.percentage, 0), 100)
        status = progress.status
        if status is ProgressStatus.COMPLETE and high < 100:
            status = ProgressStatus.PARSING
        callback(
            replace(
                progress,
                percentage=low + (high - low) * percentage // 100,
                status=status,
            )
        )

    return scaled
