"""Error taxonomy shared by ingestion and the answer pipeline."""

from __future__ import annotations


class ExplainyError(Exception):
    """Base class for every error raised inside the package."""


class UnsupportedFormat(ExplainyError):
    """The file extension is not one we extract; callers skip the file."""

    def __init__(self, file_name: str, extension: str) -> None:
        super().__init__(f"{file_name}: unsupported file extension {extension or '(none)'}")
        self.file_name = file_name
        self.extension = extension


class ExtractionError(ExplainyError):
    """An extractor failed on a supported file."""

    def __init__(self, file_name: str, cause: BaseException | str) -> None:
        super().__init__(f"{file_name}: text extraction failed ({cause})")
        self.file_name = file_name
        self.cause = cause


class WatchSubscriptionError(ExplainyError):
    """The filesystem watch could not be (re)established."""


class NoDocumentsAvailable(ExplainyError):
    """A question arrived while the document store is empty."""

    def __init__(self) -> None:
        super().__init__("No documents have been uploaded yet. Please upload some documents first.")


class NoMatchingDocument(ExplainyError):
    """An @mention did not match any document name."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"I couldn't find any document matching \"{target}\". "
            "Please check the document name and try again."
        )
        self.target = target


class CompletionError(ExplainyError):
    """The generative completion call failed; always handled by falling back."""


class SearchInternalError(ExplainyError):
    """The local fallback search itself broke."""


class PersistenceError(ExplainyError):
    """The chat-session store rejected a read or write."""
