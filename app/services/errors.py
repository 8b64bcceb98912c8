"""Errors surfaced to callers of the spreadsheet pipeline."""


class SpreadsheetInputError(Exception):
    """Upload rejected before anything was persisted.

    Covers unreadable files, empty sheets, wrong extension, oversize files and
    inconsistent reference periods.
    """

    def __init__(self, message: str, file_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.file_name = file_name


class SpreadsheetNotFound(Exception):
    def __init__(self, key: str) -> None:
        super().__init__(f"Planilha not found: {key}")
        self.key = key
