"""
CSV logging utility for recording loss values during optimization.

Defines the LossCSVLogger class, which writes content, style,
total-variation, and total losses to disk at regular intervals.
"""


import csv
from pathlib import Path
from types import TracebackType

CSV_HEADER = ["step", "content_loss", "style_loss", "tv_loss", "total_loss"]


class LossCSVLogger:
    """
    Handles CSV logging of style transfer loss metrics.

    Opens the CSV file, writes the header row, and appends one row of
    loss values every N steps. Supports use as a context manager for
    deterministic cleanup.

    Attributes:
        path: Path to the CSV file.
        log_every: Step interval for logging.
        file: File handle for the open CSV file.
        writer: CSV writer object used for writing rows.

    """

    def __init__(self, path: str | Path, log_every: int) -> None:
        """
        Initialize the CSV logger.

        Raises:
            OSError: If the file cannot be created.

        """
        self.path = Path(path)
        self.log_every = log_every

        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.file = self.path.open("w", newline="", encoding="utf-8")
        self.writer = csv.writer(self.file)
        self.writer.writerow(CSV_HEADER)
        self.file.flush()

    def log(  # noqa: PLR0913
        self,
        step: int,
        content_loss: float,
        style_loss: float,
        tv_loss: float,
        total_loss: float,
    ) -> None:
        """Write a row of loss metrics when ``step`` hits the interval."""
        if self.writer and step % self.log_every == 0:
            self.writer.writerow(
                [step, content_loss, style_loss, tv_loss, total_loss],
            )
            self.file.flush()

    def close(self) -> None:
        """Close the CSV file if it was opened."""
        if self.file and not self.file.closed:
            self.file.close()

    def __enter__(self) -> "LossCSVLogger":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool | None:
        self.close()
        return None
