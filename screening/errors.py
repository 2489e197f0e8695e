class ScreeningError(Exception):
    """Base class for everything raised by the screening core."""

class InvalidImageError(ScreeningError, ValueError):
    pass

class ModelLoadError(ScreeningError):
    """Load-time failure; nothing is cached, calling load() again retries."""

class ModelDescriptorError(ModelLoadError):
    pass

class UnknownModelFormatError(ModelLoadError):
    pass

class ModelNotLoadedError(ScreeningError, RuntimeError):
    pass

class NoGraphSignatureError(ScreeningError, RuntimeError):
    pass

class UnexpectedOutputShapeError(ScreeningError, ValueError):
    pass
