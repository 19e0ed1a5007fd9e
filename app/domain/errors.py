class GatewayError(Exception):
    """Base class for failures the gateway knows how to report."""


class ImageDownloadError(GatewayError):
    """A payment proof could not be fetched as a valid JPEG/PNG."""
