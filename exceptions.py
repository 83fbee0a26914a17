# exceptions.py
"""Error taxonomy for the extraction engine.

Every error carries a stable `code` for programmatic handling and the HTTP
status the API layer answers with. Provider timeouts and provider errors are
consumed by the router to advance the failover chain; they only reach the
caller once every configured provider has failed.
"""


class ExtractionError(Exception):
    """Base class for extraction domain errors."""

    code = "EXTRACTION_FAILED"
    status_code = 500

    def __init__(self, message: str, code: str = None, status_code: int = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InputError(ExtractionError):
    """User-correctable problem with the uploaded file."""

    status_code = 400


class NoFileError(InputError):
    code = "NO_FILE"

    def __init__(self, message: str = "No file uploaded"):
        super().__init__(message)


class FileTooLargeError(InputError):
    code = "FILE_TOO_LARGE"


class ClassificationAmbiguous(ExtractionError):
    """No indicator decided the document type. Callers default to `unknown`."""

    def __init__(self, message: str = "Document type could not be determined"):
        super().__init__(message)


class NoTemplateSelected(ExtractionError):
    def __init__(self, message: str = "No extraction template could be selected"):
        super().__init__(message)


class NoProviderAvailable(ExtractionError):
    code = "NO_PROVIDER_AVAILABLE"

    def __init__(self, message: str = "No AI service configured. Please set up API keys."):
        super().__init__(message)


class ProviderTimeout(ExtractionError):
    code = "PROVIDER_TIMEOUT"
    status_code = 504

    def __init__(self, provider: str, timeout: float):
        super().__init__(f"AI call to '{provider}' timed out after {timeout:g}s")
        self.provider = provider
        self.timeout = timeout


class ProviderError(ExtractionError):
    status_code = 502

    def __init__(self, provider: str, message: str):
        super().__init__(f"AI provider '{provider}' failed: {message}")
        self.provider = provider


class ParseError(ExtractionError):
    code = "PARSE_ERROR"
    status_code = 502

    def __init__(self, message: str, raw_response: str = ""):
        super().__init__(message)
        self.raw_response = raw_response
