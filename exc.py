class ApplicationError(Exception):
    pass


class DecodeError(ApplicationError):
    """The admission review (or the object embedded in it) could not be parsed."""


class PolicyError(ApplicationError):
    """A policy rejected the reviewed object. The message is shown to the user."""


class InternalError(ApplicationError):
    pass


class ProviderError(ApplicationError):
    pass
