class StaticServeError(Exception):
    """Base class for every fatal condition the server reports."""


class ConfigurationError(StaticServeError):
    pass


class AddressError(ConfigurationError):
    """The bind address could not be resolved."""


class TargetError(StaticServeError):
    """The path to serve could not be stat'ed."""


class BindError(StaticServeError):
    pass


class ServeLoopExited(StaticServeError):
    """The serve loop returned without being asked to stop."""


class ShutdownError(StaticServeError):
    pass
