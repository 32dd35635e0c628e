ATTACHMENT_STORAGE_UNAVAILABLE_ERROR_CODE = "ATTACHMENT_STORAGE_UNAVAILABLE"


class StorageError(Exception):
    pass


class InvalidStorageKeyError(StorageError):
    pass


class StorageConfigurationError(StorageError):
    pass


class AttachmentStorageUnavailableError(StorageError):
    """The configured backend cannot accept writes in this environment."""

    code = ATTACHMENT_STORAGE_UNAVAILABLE_ERROR_CODE

    def __init__(
        self,
        message: str,
        filesystem_code: str | None = None,
        filesystem_path: str | None = None,
    ):
        super().__init__(message)
        self.filesystem_code = filesystem_code
        self.filesystem_path = filesystem_path


def is_attachment_storage_unavailable_error(error) -> bool:
    return isinstance(error, AttachmentStorageUnavailableError) or (
        getattr(error, "code", None) == ATTACHMENT_STORAGE_UNAVAILABLE_ERROR_CODE
    )
