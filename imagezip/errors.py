from __future__ import annotations


class ProcessingError(RuntimeError):
    """A job-level failure: unreadable input, no images, placement errors."""


class JobCancelled(ProcessingError):
    def __init__(self, message: str = "Processing cancelled"):
        super().__init__(message)


class ConversionError(ProcessingError):
    """A single archive entry failed to copy, decode or encode.

    Carries enough context about the entry to diagnose the failure without
    re-running the job.
    """

    def __init__(
        self,
        entry_name: str,
        cause: BaseException | str,
        *,
        extension: str = "",
        needs_conversion: bool | None = None,
        compressed_size: int | None = None,
        uncompressed_size: int | None = None,
        extracted_size: int | None = None,
    ):
        self.entry_name = entry_name
        self.cause = cause
        self.extension = extension
        self.needs_conversion = needs_conversion
        self.compressed_size = compressed_size
        self.uncompressed_size = uncompressed_size
        self.extracted_size = extracted_size
        super().__init__(f"Failed to process image: {entry_name}: {cause}")

    def describe(self) -> list[str]:
        def _size(value: int | None) -> str:
            return f"{value} bytes" if value is not None else "<unavailable>"

        return [
            f"file_name: {self.entry_name}",
            f"extension: {self.extension}",
            f"needs_conversion: {self.needs_conversion}",
            f"zip_uncompressed_size: {_size(self.uncompressed_size)}",
            f"zip_compressed_size: {_size(self.compressed_size)}",
            f"extracted_size: {_size(self.extracted_size)}",
            f"error: {self.cause}",
        ]
