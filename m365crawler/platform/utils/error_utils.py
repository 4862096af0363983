"""Error handling utilities.

Helpers for turning exception chains into failure-log kinds and readable
messages. Graph SDK and httpx errors often have empty string forms or bury the
useful part in `__cause__`.
"""

import traceback


def get_root_cause(error: BaseException) -> BaseException:
    """Get the innermost cause of an exception chain."""
    root_cause = error
    while root_cause.__cause__ is not None:
        root_cause = root_cause.__cause__
    return root_cause


def get_root_cause_name(error: BaseException) -> str:
    """Return the class name of the innermost cause, used as a failure-log kind."""
    return type(get_root_cause(error)).__name__


def _format_with_type_if_needed(error_str: str, root_cause: BaseException) -> str:
    error_type = type(root_cause).__name__
    if error_type not in error_str:
        return f"{error_type}: {error_str}"
    return error_str


def _get_message_from_traceback(root_cause: BaseException) -> str | None:
    error_type = type(root_cause).__name__
    tb_lines = traceback.format_exception(type(root_cause), root_cause, root_cause.__traceback__)
    if tb_lines:
        last_line = tb_lines[-1].strip()
        if last_line and last_line != error_type:
            return last_line
    return None


def get_error_message(error: BaseException) -> str:
    """Get a meaningful error message from an exception.

    Walks to the root cause of the chain and falls back to the traceback and then
    the exception type when the message is empty.

    Args:
        error: The exception to extract the message from

    Returns:
        A meaningful error message string

    Examples:
        >>> try:
        ...     raise ValueError("Something went wrong")
        ... except Exception as e:
        ...     print(get_error_message(e))
        ValueError: Something went wrong
    """
    root_cause = get_root_cause(error)

    error_str = str(root_cause)
    if error_str and error_str.strip():
        return _format_with_type_if_needed(error_str, root_cause)

    tb_message = _get_message_from_traceback(root_cause)
    if tb_message:
        return tb_message

    error_module = type(root_cause).__module__
    if error_module and error_module != "builtins":
        return f"{error_module}.{type(root_cause).__name__}"
    return type(root_cause).__name__


def format_exception_chain(error: BaseException, max_depth: int = 3) -> str:
    """Format an exception chain showing the cause hierarchy.

    Args:
        error: The exception to format
        max_depth: Maximum depth of the chain to show

    Returns:
        A formatted string showing the exception chain
    """
    parts = []
    current = error
    depth = 0

    while current and depth < max_depth:
        msg = str(current) or type(current).__name__
        if depth == 0:
            parts.append(f"Error: {msg}")
        else:
            parts.append(f"Caused by: {msg}")

        current = current.__cause__
        depth += 1

    if current:
        parts.append("... (more causes)")

    return "\n".join(parts)
