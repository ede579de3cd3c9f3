import logging

logger = logging.getLogger(__name__)


class InvalidArgumentError(ValueError):
    """
    Raised when an operator receives an argument that violates its contract
    (wrong dtype, non-integer count, axis out of range, unconvertible literal).

    The check always happens before any backend kernel runs, so nothing is
    recorded on a gradient tape when this is raised.
    """


def assert_arg(condition: bool, message: str, op_name: str = None) -> None:
    """
    Raise `InvalidArgumentError` if `condition` is false.

    Args:
        condition (bool): The constraint that must hold.
        message (str): Description of the violated constraint.
        op_name (str, optional): Name of the operator performing the check.
            It prefixes the message so the failure points at the offending call.

    Raises:
        InvalidArgumentError: If `condition` is false.
    """
    if not condition:
        if op_name:
            message = f"{op_name}: {message}"
        raise InvalidArgumentError(message)
