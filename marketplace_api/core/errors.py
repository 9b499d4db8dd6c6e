class ListingValidationError(ValueError):
    """Payload rejected before any write is attempted."""


class InvalidImageError(ListingValidationError):
    pass


class ImageTooLargeError(ListingValidationError):
    pass


class ListingStoreError(Exception):
    """The storage backend could not complete the operation."""


class VersionConflictError(ListingStoreError):
    """A conditional write was rejected because the version token is stale."""


class ImageHostError(Exception):
    pass
