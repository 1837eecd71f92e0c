"""Error taxonomy shared by all pillars."""


class LingopalError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(LingopalError):
    """A required credential or setting is missing."""


class ServiceError(LingopalError):
    """A remote service call (conversation or lookup) failed."""


class CapabilityUnavailableError(LingopalError):
    """A platform capability (speech recognition or synthesis) is missing."""


class SpeechError(LingopalError):
    """A speech capability reported a failure while in use."""


class RecognitionError(SpeechError):
    pass


class SynthesisError(SpeechError):
    pass


class StorageQuotaError(LingopalError):
    """A persistence write was rejected because the store is full."""


class ValidationError(LingopalError):
    """Input was rejected locally: empty required field, malformed backup, ..."""
