"""
Error taxonomy of the KMM BootModuleConfig engine.

Every error names the primitive that raised it and, where it applies, the
node, the predicate that did not hold and how long the primitive waited.
"""


class KmmError(Exception):
    def __init__(self, message, primitive=None, node=None, predicate=None, elapsed=None):
        super().__init__(message)
        self.message = message
        self.primitive = primitive
        self.node = node
        self.predicate = predicate
        self.elapsed = elapsed

    def __str__(self):
        details = []
        if self.primitive:
            details.append(f"primitive={self.primitive}")
        if self.node:
            details.append(f"node={self.node}")
        if self.predicate:
            details.append(f"predicate={self.predicate}")
        if self.elapsed is not None:
            details.append(f"elapsed={self.elapsed:.0f}s")

        if not details:
            return self.message
        return f"{self.message} ({', '.join(details)})"


class NodeNotFoundError(KmmError):
    pass


class NoHelperPodError(KmmError):
    pass


class HelperPodNotReadyError(NoHelperPodError):
    pass


class ExecFailedError(KmmError):
    def __init__(self, message, output="", rc=None, **kwargs):
        super().__init__(message, **kwargs)
        self.output = output
        self.rc = rc


class NonZeroExitError(ExecFailedError):
    pass


class TransitionTimeoutError(KmmError):
    pass


class BootIdUnchangedError(TransitionTimeoutError):
    pass


class NodeNotReadyError(TransitionTimeoutError):
    pass


class ResourceAbsentError(KmmError):
    pass


class BmcAssertionError(KmmError, AssertionError):
    pass


class BuildPodFailedError(KmmError):
    pass


def engine_error_from_timeout(timeout_error):
    """Return the engine error that aborted a TimeoutSampler loop, if any."""
    last_exp = getattr(timeout_error, "last_exp", None)
    if isinstance(last_exp, KmmError):
        return last_exp
    return None

