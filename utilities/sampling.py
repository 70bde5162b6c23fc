import logging

from kubernetes.client.rest import ApiException
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from utilities.exceptions import engine_error_from_timeout

LOGGER = logging.getLogger(__name__)


def wait_for_sample(func, timeout, sleep, on_timeout, exceptions_dict=None, print_log=True, **func_kwargs):
    """
    Poll func every `sleep` seconds and return its first truthy sample.

    API errors are retried until the deadline. An engine error raised by func
    aborts the wait and is re-raised as is; running out of time raises the
    error built by on_timeout().

    Args:
        func: callable sampled on every tick.
        timeout (int): seconds from the call, not reset by intermediate samples.
        sleep (int): seconds between samples.
        on_timeout: zero-argument callable returning the timeout exception.
        exceptions_dict (dict): exceptions to retry, in TimeoutSampler format.
        print_log (bool): let TimeoutSampler log every sample.
    """
    try:
        for sample in TimeoutSampler(
            wait_timeout=timeout,
            sleep=sleep,
            func=func,
            exceptions_dict=exceptions_dict or {ApiException: []},
            print_log=print_log,
            **func_kwargs,
        ):
            if sample:
                return sample
    except TimeoutExpiredError as exc:
        engine_error = engine_error_from_timeout(timeout_error=exc)
        if engine_error:
            raise engine_error from exc

        error = on_timeout()
        LOGGER.error(str(error))
        raise error from exc
